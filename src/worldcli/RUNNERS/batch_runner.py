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
Fan-out of one operation over many resources.

Every item gets its own worker. Each worker reports an initiating event and
exactly one finished event to the display sink; failures are collected and
raised together once every worker is done.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from ..DISPLAY.sink import DisplaySink, NullSink
from ..errors import AggregatedError, OperationCancelled
from ..MODELS.process_state import Operation, ProcessState, ResourceKind
from ..UTILS.cancellation import CancelToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BatchRunner:
    """
    Runs one task per item concurrently and joins them.

    :param sink: Receives the status events of every task.
    :param token: The governing context; tasks that have not begun when it is
        cancelled are skipped.
    """

    def __init__(self, sink: Optional[DisplaySink] = None, token: Optional[CancelToken] = None):
        self.sink = sink or NullSink()
        self.token = token or CancelToken()

    def run(self, items: Sequence[T], task: Callable[[T], None], kind: ResourceKind,
            operation: Operation, summary: str,
            name_of: Callable[[T], str] = lambda item: item.name) -> None:
        """
        Calls ``task(item)`` for every item and waits for all of them.

        :param items: What to operate on.
        :param task: The per-item operation; raising marks that item failed.
        :param kind: Resource kind reported to the sink.
        :param operation: Operation reported to the sink.
        :param summary: First line of the aggregated error.
        :param name_of: Display name of an item.
        :raises AggregatedError: If any task failed; siblings still ran to completion.
        :raises OperationCancelled: If the token was cancelled and nothing failed.
        """
        if not items:
            return

        failures: List[Tuple[str, BaseException]] = []
        cancelled = False
        with ThreadPoolExecutor(max_workers=len(items), thread_name_prefix=operation.value) as pool:
            futures = {
                pool.submit(self._run_one, item, task, name_of(item), kind, operation): name_of(item)
                for item in items
            }
            # completion order is unspecified
            for future in as_completed(futures):
                name = futures[future]
                try:
                    future.result()
                except OperationCancelled:
                    cancelled = True
                except Exception as e:
                    failures.append((name, e))

        if failures:
            raise AggregatedError(summary, failures)
        if cancelled:
            raise OperationCancelled(f"{operation.value} cancelled")

    def _run_one(self, item: T, task: Callable[[T], None], name: str,
                 kind: ResourceKind, operation: Operation) -> None:
        if self.token.cancelled:
            self.sink.post(ProcessState.cancelled(name, kind, operation))
            raise OperationCancelled(f"{operation.value} {name} cancelled")

        self.sink.post(ProcessState.initiating(name, kind, operation))
        try:
            task(item)
        except OperationCancelled:
            self.sink.post(ProcessState.cancelled(name, kind, operation))
            raise
        except Exception as e:
            logger.debug("%s %s failed", operation.value, name, exc_info=True)
            self.sink.post(ProcessState.errored(name, kind, operation, e))
            raise
        self.sink.post(ProcessState.succeeded(name, kind, operation))
