# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Progress tracking for image transfers.
"""
from typing import Optional


class ProgressTracker:
    """
    Turns byte counters from a pull or push stream into a percentage that
    never goes backwards, even when layers report out of order.
    """

    def __init__(self):
        self.current = 0

    def update(self, current: Optional[int], total: Optional[int]) -> int:
        """
        Feeds one ``current``/``total`` pair.

        :return: The percentage to display, at least the last one returned.
        """
        if current is not None and total:
            percent = min(int(current * 100 / total), 100)
            if percent > self.current:
                self.current = percent
        return self.current

    def finish(self) -> int:
        # Cached layers report no counters at all
        self.current = 100
        return self.current
