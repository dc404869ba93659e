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
Cooperative cancellation shared by every task of one orchestration call.
"""
import logging
import threading
from typing import Callable, List, Optional

from ..errors import OperationCancelled

logger = logging.getLogger(__name__)


class CancelToken:
    """
    The governing context of a top-level command.

    Tasks poll :attr:`cancelled` or call :meth:`raise_if_cancelled` at their
    blocking points. Code that blocks inside a stream read registers a callback
    with :meth:`on_cancel` (usually one shutting the stream down) so that it wakes up
    as soon as the token is cancelled.
    """

    def __init__(self, parent: Optional["CancelToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        if parent is not None:
            parent.on_cancel(self.cancel)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """
        Cancels the token and runs every registered callback once.
        """
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.debug("cancel callback failed", exc_info=True)

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Registers ``callback`` to run on cancellation. If the token is already
        cancelled the callback runs immediately.

        :return: A function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)
                return remove
        callback()
        return lambda: None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Sleeps up to ``timeout`` seconds, returning early on cancellation.

        :return: True if the token was cancelled.
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("operation cancelled")
