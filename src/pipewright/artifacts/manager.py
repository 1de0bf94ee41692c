"""In-memory artifact table in front of an optional cache backend."""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from types import TracebackType

from pipewright.artifacts.artifact import Artifact
from pipewright.artifacts.reference import ArtifactReference
from pipewright.cache.base import ArtifactOpener, Cache
from pipewright.errors import ResourceCleanupError
from pipewright.resources import DEFAULT_TEMPORARY_PREFIX, attach_cleanup_error, remove_tree

logger = logging.getLogger(__name__)


class ArtifactManager:
    """Resolves references to artifacts, remembering every resolution for the run.

    Without a cache backend nothing is ever found until a task registers it.
    Outputs that could not be stored durably are adopted into a scratch
    directory owned by the manager and removed on ``close()``.
    """

    def __init__(
        self,
        cache: Cache | None = None,
        *,
        temporary_prefix: str = DEFAULT_TEMPORARY_PREFIX,
    ) -> None:
        self.cache = cache
        self.temporary_prefix = temporary_prefix
        self._artifacts: dict[ArtifactReference, Artifact] = {}
        self._scratch_dir: Path | None = None

    @property
    def caching_enabled(self) -> bool:
        return self.cache is not None

    def get_artifact(self, reference: ArtifactReference) -> Artifact | None:
        """Return the artifact for ``reference`` or ``None`` when nothing is stored.

        Backend I/O failures propagate as ``OSError``.
        """

        known = self._artifacts.get(reference)
        if known is not None:
            return known
        if self.cache is None:
            return None

        location = self.cache.lookup(reference)
        if location is None:
            return None
        artifact = self._wrap(reference, Path(location))
        self._artifacts[reference] = artifact
        logger.debug("Resolved artifact %s from cache at %s", reference.identifier, location)
        return artifact

    def register_artifact(self, reference: ArtifactReference, temporary_path: Path) -> Artifact:
        """Store freshly produced content for ``reference`` and record it for this run."""

        source = Path(temporary_path)
        artifact: Artifact | None = None
        if self.cache is not None:
            try:
                location = self.cache.write(reference, source)
            except OSError as error:
                logger.warning(
                    "Failed to populate cache for artifact %s: %s",
                    reference.identifier,
                    error,
                )
            else:
                artifact = self._wrap(reference, Path(location))

        if artifact is None:
            artifact = Artifact(reference, self._adopt(reference, source))

        previous = self._artifacts.get(reference)
        self._artifacts[reference] = artifact
        if previous is not None and previous is not artifact:
            previous.close()
        return artifact

    def close(self) -> None:
        """Close every known artifact and drop the scratch directory."""

        failures: list[tuple[Path | object, BaseException]] = []
        while self._artifacts:
            _, artifact = self._artifacts.popitem()
            try:
                artifact.close()
            except OSError as error:
                failures.append((artifact, error))
        if self._scratch_dir is not None:
            failures.extend(remove_tree(self._scratch_dir))
            self._scratch_dir = None
        if failures:
            raise ResourceCleanupError(failures)

    def __enter__(self) -> ArtifactManager:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.close()
        except ResourceCleanupError as cleanup_error:
            if exc is None:
                raise
            attach_cleanup_error(exc, cleanup_error)

    def _wrap(self, reference: ArtifactReference, location: Path) -> Artifact:
        if isinstance(self.cache, ArtifactOpener):
            return self.cache.open_artifact(reference, location)
        return Artifact(reference, location)

    def _adopt(self, reference: ArtifactReference, source: Path) -> Path:
        if self._scratch_dir is None:
            self._scratch_dir = Path(tempfile.mkdtemp(prefix=self.temporary_prefix))
        holder = Path(tempfile.mkdtemp(prefix="artifact_", dir=self._scratch_dir))
        target = holder / (source.name or "output")
        shutil.move(str(source), target)
        logger.debug("Keeping uncached artifact %s at %s", reference.identifier, target)
        return target
