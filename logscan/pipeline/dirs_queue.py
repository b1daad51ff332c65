import logging
import queue
from pathlib import Path
from typing import Iterator, List

from pydantic import TypeAdapter

from logscan.domain.models import DirInfo

logger = logging.getLogger(__name__)

_DIRS_ADAPTER = TypeAdapter(List[DirInfo])


class DirInfoQueue:
    """Hand-off between the scanning and processing stages.

    Scanner tasks put() from any thread; the processing stage drains the
    queue once scanning is complete. The pending set can be written to and
    restored from a JSON checkpoint.
    """

    def __init__(self):
        self._queue: "queue.Queue[DirInfo]" = queue.Queue()

    def put(self, dir_info: DirInfo):
        self._queue.put(dir_info)

    def __len__(self) -> int:
        return self._queue.qsize()

    def drain(self) -> Iterator[DirInfo]:
        while True:
            try:
                yield self._queue.get_nowait()
            except queue.Empty:
                return

    def pending(self) -> List[DirInfo]:
        with self._queue.mutex:
            return list(self._queue.queue)

    def save(self, path: Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_bytes(_DIRS_ADAPTER.dump_json(self.pending(), indent=2))
        tmp_path.replace(path)
        logger.info(f"Checkpoint saved: {path} ({len(self)} locations)")

    @classmethod
    def load(cls, path: Path) -> "DirInfoQueue":
        dirs_queue = cls()
        for dir_info in _DIRS_ADAPTER.validate_json(Path(path).read_bytes()):
            dirs_queue.put(dir_info)
        return dirs_queue
