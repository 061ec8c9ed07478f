"""
Disk store for synthesized speech.

Voice synthesis returns MP3 bytes; the relay keeps them on disk under the
request's content key and hands the caller an ``audioReference`` URL served
by ``GET /api/elevenlabs/audio/{key}``.

File Organization:
    {base_dir}/
        ab/
            ab12...ef.mp3
        cd/
            cd34...90.mp3

The first 2 hex characters of the key pick the shard directory. Files
older than the TTL are removed by :meth:`AudioStore.cleanup`, which runs
opportunistically on save at most once per cleanup interval.
"""
from __future__ import annotations

import re
import threading
import time
from pathlib import Path
from typing import Dict, Optional

from relay_api.core.config import AudioConfig
from relay_api.core.logging import get_logger, info, verbose, warn
from relay_api.utils.timeit import timeit

_LOG = get_logger("relay.audio")

AUDIO_ROUTE = "/api/elevenlabs/audio"

_KEY = re.compile(r"^[0-9a-f]{64}$")


def estimate_duration(num_bytes: int, bitrate_kbps: int) -> float:
    """Seconds of constant-bitrate MP3 audio in ``num_bytes``, to 0.1s."""
    return round(num_bytes * 8 / (bitrate_kbps * 1000), 1)


class AudioStore:
    """
    Sharded on-disk MP3 store with TTL cleanup.

    Args:
        config: base_dir, ttl_seconds and bitrate_kbps.
        public_base_url: Prefix for audio references ("" -> relative URLs).
        cleanup_interval_seconds: Minimum seconds between cleanups.
    """

    def __init__(self, config: AudioConfig, public_base_url: str = "", cleanup_interval_seconds: int = 600):
        self.config = config
        self._base_dir = Path(config.base_dir)
        self._public_base_url = public_base_url.rstrip("/")
        self._cleanup_interval = cleanup_interval_seconds
        self._last_cleanup = time.time()
        self._lock = threading.Lock()

    @staticmethod
    def valid_key(key: str) -> bool:
        return bool(_KEY.match(key))

    def path_for(self, key: str) -> Path:
        if not self.valid_key(key):
            raise ValueError(f"invalid audio key: {key[:16]}")
        return self._base_dir / key[:2] / f"{key}.mp3"

    def reference(self, key: str) -> str:
        return f"{self._public_base_url}{AUDIO_ROUTE}/{key}"

    def save(self, key: str, audio: bytes) -> Dict[str, object]:
        """
        Write audio atomically and describe it.

        Returns:
            {"audioReference": url, "duration": seconds}

        Raises:
            OSError: If the file cannot be written.
        """
        p = self.path_for(key)
        p.parent.mkdir(parents=True, exist_ok=True)

        with timeit("audio_write") as t:
            # temp file + rename so readers never see a partial file
            tmp = p.with_suffix(".tmp")
            try:
                tmp.write_bytes(audio)
                tmp.replace(p)
            finally:
                if tmp.exists():
                    tmp.unlink()

        info(_LOG, "audio_saved", key=key[:8], bytes=len(audio), seconds=round(t.timing.seconds, 4))
        self.maybe_cleanup()
        return {
            "audioReference": self.reference(key),
            "duration": estimate_duration(len(audio), self.config.bitrate_kbps),
        }

    def _fresh_path(self, key: str) -> Optional[Path]:
        if not self.valid_key(key):
            return None
        p = self.path_for(key)
        try:
            st = p.stat()
        except FileNotFoundError:
            return None
        if time.time() - st.st_mtime >= self.config.ttl_seconds:
            verbose(_LOG, "audio_expired", key=key[:8])
            return None
        return p

    def exists(self, key: str) -> bool:
        """True while the audio for ``key`` is stored and within its TTL."""
        return self._fresh_path(key) is not None

    def load(self, key: str) -> Optional[bytes]:
        """Stored audio, or None when unknown, malformed or expired."""
        p = self._fresh_path(key)
        if p is None:
            return None
        try:
            return p.read_bytes()
        except OSError as e:
            warn(_LOG, "audio_read_error", key=key[:8], error=str(e))
            return None

    def maybe_cleanup(self) -> None:
        now = time.time()
        with self._lock:
            if now - self._last_cleanup < self._cleanup_interval:
                return
            self._last_cleanup = now
        self.cleanup()

    def cleanup(self) -> int:
        """
        Remove files older than the TTL and empty shard directories.

        Returns:
            Number of files removed.
        """
        if not self._base_dir.exists():
            return 0

        cutoff = time.time() - self.config.ttl_seconds
        removed = 0
        for shard in self._base_dir.iterdir():
            if not shard.is_dir():
                continue
            for f in shard.glob("*.mp3"):
                try:
                    if f.stat().st_mtime < cutoff:
                        f.unlink()
                        removed += 1
                except OSError as e:
                    verbose(_LOG, "cleanup_file_error", file=f.name, error=str(e))
            try:
                if not any(shard.iterdir()):
                    shard.rmdir()
            except OSError:
                pass

        if removed:
            info(_LOG, "audio_cleanup", files_removed=removed)
        return removed
