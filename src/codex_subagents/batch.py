"""
Batch Processor - Fan-out/fan-in execution of multiple delegate calls.

Processes a batch of items concurrently with an optional concurrency
limit. Each item is processed independently; individual failures
do not abort the batch, and results keep the input order.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchResult(Generic[R]):
	"""Result of processing a single batch item."""
	index: int
	success: bool
	result: Optional[R] = None
	error: Optional[str] = None


class BatchProcessor(Generic[T, R]):
	"""
	Processes batches of items with concurrency control.

	Uses asyncio.Semaphore to limit concurrent processing when
	max_concurrency is positive; 0 runs every item at once.
	"""

	def __init__(self, max_concurrency: int = 0):
		"""
		Initialize batch processor.

		Args:
			max_concurrency: Maximum number of items processed concurrently (0 = unbounded)
		"""
		self.max_concurrency = max_concurrency

	async def execute(
		self,
		items: list[T],
		handler: Callable[[T], Awaitable[R]],
	) -> list[BatchResult[R]]:
		"""
		Execute a batch of items through the handler.

		Args:
			items: Items to process
			handler: Async function to process each item

		Returns:
			One BatchResult per item, in input order
		"""
		if not items:
			return []

		limit = self.max_concurrency if self.max_concurrency > 0 else len(items)
		semaphore = asyncio.Semaphore(limit)

		async def process_item(index: int, item: T) -> BatchResult[R]:
			async with semaphore:
				try:
					return BatchResult(index=index, success=True, result=await handler(item))
				except Exception as e:
					logger.warning(f"Batch item {index} failed: {e}")
					return BatchResult(index=index, success=False, error=str(e))

		# Fan out; gather keeps input order on the way back in
		return list(await asyncio.gather(*(process_item(i, item) for i, item in enumerate(items))))
