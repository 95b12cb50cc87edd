# cache.py
from __future__ import annotations

import fnmatch
import hashlib
import io
import json
import os
import shutil
import tarfile
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass, replace
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from .environments.base import Environment
from .errors import CacheError, Reason
from .model import ExecutionResult, Failure, Success

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# A cache entry is a snapshot of the paths declared on a save step:
#
#   cache key -> tar.gz of those paths (relative to the environment root),
#                its first member a manifest (key, declared paths)
#
# One entry per key is current; a later save under the same key replaces
# it (last write wins, no merge).
#
# Restoring extracts the snapshot back into a fresh environment. A miss
# is not an error: the job simply runs cold.
#
# Key derivation is the job author's choice. `derive_key` is offered for
# content-derived keys but nothing applies it implicitly.
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".cirunner/cache"
DEFAULT_CACHE_EXCLUDES = [
    "*/__pycache__",
    "*.pyc",
    "*/.DS_Store",
]
MANIFEST_ARCNAME = ".cirunner_cache_manifest.json"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    paths: Tuple[str, ...]
    created_at: float
    # exactly one of these is set, depending on the backing store
    archive: Path | None = None
    data: bytes | None = None

    def open(self) -> BinaryIO:
        if self.data is not None:
            return io.BytesIO(self.data)
        if self.archive is None:
            raise CacheError(message=f"cache entry {self.key!r} has no snapshot")
        return self.archive.open("rb")


class CacheStore(Protocol):
    """Backing store: key -> snapshot. get/put only, last write wins."""

    def get(self, key: str) -> Optional[CacheEntry]:
        ...

    def put(self, key: str, paths: Sequence[str], archive: Path) -> CacheEntry:
        ...


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# ---------------------------------------------------------------------
# Content-derived keys
# ---------------------------------------------------------------------

def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _resolve_globs(repo_root: Path, patterns: List[str]) -> List[Path]:
    """
    Expand input patterns into concrete paths.
    Supports:
      - file path: "Cargo.lock"
      - dir path:  "src/"
      - glob:      "crates/**/Cargo.toml"
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = repo_root / pat
        if p.exists():
            out.append(p)
            continue
        out.extend(m for m in sorted(repo_root.glob(pat)) if m.exists())

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq


def derive_key(prefix: str, inputs: List[str], *, root: str | Path = ".") -> str:
    """
    Build a cache key that changes whenever any declared input file changes:
        derive_key("cargo", ["Cargo.lock"]) -> "cargo-3f7a09c1d2e4b5a6"
    Inputs that match nothing are ignored.
    """
    repo_root = Path(root).resolve()
    fingerprints: List[Tuple[str, str]] = []
    for p in _resolve_globs(repo_root, inputs):
        files = [p] if p.is_file() else list(_iter_files_under(p))
        for f in files:
            rel = f.resolve().relative_to(repo_root).as_posix()
            fingerprints.append((rel, _hash_file_contents(f)))
    fingerprints.sort()
    return f"{prefix}-{_sha256_str(_json_dumps_stable(fingerprints))[:16]}"


# ---------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------

def _excluded(name: str, excludes: List[str]) -> bool:
    return any(fnmatch.fnmatch(name, pat) for pat in excludes)


def snapshot(env: Environment, paths: Sequence[str], dest: Path, *, key: str, excludes: Optional[List[str]] = None) -> List[str]:
    """
    Write a tar.gz of the declared paths to `dest`, with member names
    relative to the environment root ("workspace/target/...", "home/.cargo/...").

    The first member is the entry's manifest (key, declared paths, stored
    paths), so an archive always describes itself.

    Returns the declared paths that actually existed.
    """
    exclude_globs = list(DEFAULT_CACHE_EXCLUDES) + list(excludes or [])

    def _filter(info: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        return None if _excluded(info.name, exclude_globs) else info

    sources = [(declared, env.resolve(declared)) for declared in paths]
    present = [(declared, src) for declared, src in sources if src.exists() or src.is_symlink()]
    stored = [declared for declared, _ in present]

    with tarfile.open(str(dest), mode="w:gz") as tar:
        manifest = json.dumps(
            {"key": key, "paths": list(paths), "stored": stored},
            sort_keys=True,
            indent=2,
            ensure_ascii=False,
        ).encode("utf-8")
        info = tarfile.TarInfo(name=MANIFEST_ARCNAME)
        info.size = len(manifest)
        info.mtime = int(time.time())
        tar.addfile(info, fileobj=io.BytesIO(manifest))

        for _, src in present:
            tar.add(str(src), arcname=src.relative_to(env.root).as_posix(), recursive=True, filter=_filter)
    return stored


def _read_manifest(tar: tarfile.TarFile, key: str) -> Tuple[Dict, float]:
    """Manifest and creation time of an archive positioned at its first member."""
    first = tar.next()
    if first is None or first.name != MANIFEST_ARCNAME:
        raise CacheError(message=f"cache entry {key!r} has no embedded manifest")
    fh = tar.extractfile(first)
    try:
        manifest = json.loads(fh.read().decode("utf-8"))
    except ValueError as e:
        raise CacheError(message=f"unreadable manifest for {key!r}: {e}") from e
    if not isinstance(manifest, dict):
        raise CacheError(message=f"unreadable manifest for {key!r}")
    return manifest, float(first.mtime)


def extract(entry: CacheEntry, env: Environment) -> Tuple[str, ...]:
    """
    Overwrite-by-extraction into the environment root.

    Returns the declared paths recorded in the archive that was actually
    extracted, which may be newer than `entry` if a save raced the restore.
    """
    with entry.open() as fh, tarfile.open(fileobj=fh, mode="r:gz") as tar:
        manifest, _ = _read_manifest(tar, entry.key)
        members = [m for m in tar.getmembers() if m.name != MANIFEST_ARCNAME]
        tar.extractall(path=str(env.root), members=members, filter="data")
    return tuple(manifest.get("paths", entry.paths))


# ---------------------------------------------------------------------
# Backing stores
# ---------------------------------------------------------------------

class FileCacheStore:
    """
    File-based cache store:
      root/
        <sha256(key)>.tar.gz          snapshot, manifest embedded as the first member
        <sha256(key)>.manifest.json   listing index for list/prune

    Lookups read only the archive, so a reader always sees one consistent
    entry. Both files are written to a temp name and renamed into place;
    the last rename wins.
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).resolve()

    def _stem(self, key: str) -> str:
        return _sha256_str(key)

    def artifact_path(self, key: str) -> Path:
        return self.root / f"{self._stem(key)}.tar.gz"

    def manifest_path(self, key: str) -> Path:
        return self.root / f"{self._stem(key)}.manifest.json"

    def get(self, key: str) -> Optional[CacheEntry]:
        art = self.artifact_path(key)
        try:
            fh = art.open("rb")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheError(message=f"cache entry {key!r} unreadable: {e}", details={"archive": str(art)}) from e
        with fh:
            try:
                with tarfile.open(fileobj=fh, mode="r:gz") as tar:
                    manifest, created_at = _read_manifest(tar, key)
            except (OSError, EOFError, tarfile.TarError) as e:
                raise CacheError(message=f"corrupt cache archive for {key!r}: {e}", details={"archive": str(art)}) from e
        return CacheEntry(
            key=key,
            paths=tuple(manifest.get("paths", [])),
            created_at=created_at,
            archive=art,
        )

    def put(self, key: str, paths: Sequence[str], archive: Path) -> CacheEntry:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(message=f"cache directory unavailable: {e}", details={"root": str(self.root)}) from e

        art = self.artifact_path(key)
        man = self.manifest_path(key)
        token = uuid.uuid4().hex
        tmp_art = art.with_name(f"{art.name}.{token}.tmp")
        tmp_man = man.with_name(f"{man.name}.{token}.tmp")
        created_at = time.time()
        manifest = {"key": key, "paths": list(paths), "created_at": created_at}
        try:
            shutil.copyfile(archive, tmp_art)
            tmp_man.write_text(json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_art, art)
            os.replace(tmp_man, man)
        except OSError as e:
            raise CacheError(message=f"could not write cache entry {key!r}: {e}", details={"root": str(self.root)}) from e
        finally:
            tmp_art.unlink(missing_ok=True)
            tmp_man.unlink(missing_ok=True)

        return CacheEntry(key=key, paths=tuple(paths), created_at=created_at, archive=art)

    def list(self) -> List[Dict]:
        """Stored manifests, newest first."""
        if not self.root.exists():
            return []
        out = []
        for man in self.root.glob("*.manifest.json"):
            try:
                data = json.loads(man.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                continue
            art = man.with_name(man.name.replace(".manifest.json", ".tar.gz"))
            data["size"] = art.stat().st_size if art.exists() else 0
            out.append(data)
        return sorted(out, key=lambda d: d.get("created_at", 0), reverse=True)

    def prune(self, keep: int = 3) -> List[str]:
        """
        Keep only the newest N entries. Uses file mtime as "newest".
        Returns the removed keys.
        """
        if not self.root.exists():
            return []
        tars = sorted(self.root.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        removed = []
        for p in tars[keep:]:
            man = p.with_name(p.name.replace(".tar.gz", ".manifest.json"))
            if man.exists():
                try:
                    removed.append(json.loads(man.read_text(encoding="utf-8")).get("key", p.stem))
                except ValueError:
                    removed.append(p.stem)
            p.unlink(missing_ok=True)
            man.unlink(missing_ok=True)
        return removed

    def clear(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)


class MemoryCacheStore:
    """In-process store, safe to share between threads."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, paths: Sequence[str], archive: Path) -> CacheEntry:
        entry = CacheEntry(key=key, paths=tuple(paths), created_at=time.time(), data=Path(archive).read_bytes())
        with self._lock:
            self._entries[key] = entry
        return entry


# ---------------------------------------------------------------------
# Manager (used by the job runner)
# ---------------------------------------------------------------------

class CacheManager:
    """
    Restore/save cache entries for a running job.

    `restore` returns None on a miss. Backing-store problems surface as
    CacheError, which the caller downgrades to a warning.
    `save` never raises: a failed save comes back as Failure(cache_error).
    """

    def __init__(self, store: CacheStore, *, excludes: Optional[List[str]] = None):
        self.store = store
        self.excludes = excludes or []

    def restore(self, key: str, env: Environment) -> Optional[CacheEntry]:
        try:
            entry = self.store.get(key)
        except OSError as e:
            raise CacheError(message=f"cache lookup failed: {e}", details={"key": key}) from e
        if entry is None:
            return None
        try:
            paths = extract(entry, env)
        except (OSError, EOFError, tarfile.TarError) as e:
            raise CacheError(message=f"cache exists but restore failed: {e}", details={"key": key}) from e
        return replace(entry, paths=paths)

    def save(self, key: str, paths: Sequence[str], env: Environment) -> ExecutionResult:
        fd, tmp = tempfile.mkstemp(prefix="cache-", suffix=".tar.gz", dir=str(env.root))
        os.close(fd)
        tmp_path = Path(tmp)
        try:
            stored = snapshot(env, paths, tmp_path, key=key, excludes=self.excludes)
            self.store.put(key, paths, tmp_path)
        except CacheError as e:
            return Failure(reason=Reason.CACHE, message=e.message)
        except (OSError, ValueError, tarfile.TarError) as e:
            return Failure(reason=Reason.CACHE, message=f"could not save cache {key!r}: {e}")
        finally:
            tmp_path.unlink(missing_ok=True)

        missing = [p for p in paths if p not in stored]
        detail = f"saved {len(stored)} of {len(paths)} path(s)"
        if missing:
            detail += f"; not found: {', '.join(missing)}"
        return Success(detail=detail)
