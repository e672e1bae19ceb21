"""Streaming zip assembly into object storage.

The archive writer and the uploader run on separate worker threads joined by
a ``StreamPipe``: a bounded in-memory byte channel. The writer blocks once
``capacity`` bytes are waiting, and the uploader blocks until it has a full
part or the writer closes the pipe. A failure on either side is pushed into
the pipe so the other side stops at its next read or write.
"""
import os
import threading
import zipfile
from typing import Callable, Iterable, List, Optional, Tuple

from uploadnest.utils import sanitize_filename

COPY_CHUNK_SIZE = 64 * 1024

class PipeAborted(IOError):
    """Raised on one end of a StreamPipe after the other end failed."""

class StreamPipe:
    def __init__(self, capacity: int = 8 * 1024 * 1024):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._buffer = bytearray()
        self._cond = threading.Condition()
        self._closed = False
        self._writer_error: Optional[BaseException] = None
        self._reader_error: Optional[BaseException] = None
        self._aborted = False

    # writer side

    def write(self, data) -> int:
        data = bytes(data)
        with self._cond:
            if self._aborted:
                raise PipeAborted("pipe aborted") from self._reader_error
            if self._writer_error is not None:
                # writer already gave up; late bytes from archive teardown are dropped
                return len(data)
            if self._closed:
                raise ValueError("write to closed pipe")

            view = memoryview(data)
            while view:
                while len(self._buffer) >= self.capacity and self._reader_error is None:
                    self._cond.wait()
                if self._reader_error is not None:
                    raise PipeAborted("reader side of the pipe failed") from self._reader_error
                room = self.capacity - len(self._buffer)
                self._buffer += view[:room]
                view = view[room:]
                self._cond.notify_all()
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def fail_writer(self, exc: BaseException) -> None:
        with self._cond:
            if self._writer_error is None:
                self._writer_error = exc
            self._cond.notify_all()

    # reader side

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        """Blocks until ``size`` bytes are available or the writer closed the pipe.

        Multipart uploaders expect full-sized parts, so short reads only
        happen at end of stream.
        """
        out = bytearray()
        with self._cond:
            while True:
                if self._writer_error is not None:
                    raise PipeAborted("writer side of the pipe failed") from self._writer_error
                wanted = len(self._buffer) if size < 0 else min(size - len(out), len(self._buffer))
                if wanted:
                    out += self._buffer[:wanted]
                    del self._buffer[:wanted]
                    self._cond.notify_all()
                if size >= 0 and len(out) >= size:
                    break
                if self._closed and not self._buffer:
                    break
                self._cond.wait()
        return bytes(out)

    def fail_reader(self, exc: BaseException) -> None:
        with self._cond:
            if self._reader_error is None:
                self._reader_error = exc
            self._buffer.clear()
            self._cond.notify_all()

    def abort(self, exc: BaseException) -> None:
        """Fails both ends; later writes raise instead of being dropped."""
        with self._cond:
            self._aborted = True
        self.fail_writer(exc)
        self.fail_reader(exc)

    def raise_if_aborted(self) -> None:
        with self._cond:
            if self._aborted:
                raise PipeAborted("pipe aborted") from self._reader_error

def unique_entry_names(names: Iterable[str]) -> List[str]:
    """Sanitizes names and suffixes repeats: a.txt, a (1).txt, a (2).txt."""
    seen = set()
    result = []
    for raw in names:
        name = sanitize_filename(raw)
        candidate = name
        base, ext = os.path.splitext(name)
        counter = 1
        while candidate.lower() in seen:
            candidate = f"{base} ({counter}){ext}"
            counter += 1
        seen.add(candidate.lower())
        result.append(candidate)
    return result

def write_archive(
    pipe: StreamPipe,
    entries: List[Tuple[str, str]],
    open_stream: Callable[[str], object],
    compresslevel: int = 6
) -> None:
    """Writes (entry_name, storage_key) pairs into a zip streamed through ``pipe``.

    Entries are appended in order. If any source stream cannot be opened or
    read, the pipe is failed before the archive is closed, so the uploader
    never sees a finalized archive.
    """
    archive = zipfile.ZipFile(pipe, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=compresslevel)
    try:
        for entry_name, key in entries:
            source = open_stream(key)
            try:
                with archive.open(entry_name, mode="w") as target:
                    # deflate can buffer many reads before it writes to the pipe
                    while True:
                        chunk = source.read(COPY_CHUNK_SIZE)
                        if not chunk:
                            break
                        pipe.raise_if_aborted()
                        target.write(chunk)
            finally:
                source.close()
    except BaseException as exc:
        pipe.fail_writer(exc)
        # the failed pipe swallows the central directory written here
        archive.close()
        raise

    archive.close()
    pipe.close()
