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
Helpers for terminal escape codes in forwarded container output.
"""
import re

import click

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")

# Cycled through so neighbouring containers get different prefixes
PREFIX_COLORS = ("cyan", "magenta", "yellow", "green", "blue", "bright_red",
                 "bright_cyan", "bright_magenta")


def remove_first_ansi_escape(text: str) -> str:
    """
    Removes only the first ANSI escape sequence in ``text``; any later ones
    are passed through untouched.
    """
    match = ANSI_ESCAPE.search(text)
    if match is None:
        return text
    return text[:match.start()] + text[match.end():]


def color_for(index: int) -> str:
    return PREFIX_COLORS[index % len(PREFIX_COLORS)]


def prefix(name: str, index: int) -> str:
    """Returns ``[name]`` coloured for the container at position ``index``."""
    return "[" + click.style(name, fg=color_for(index)) + "]"
