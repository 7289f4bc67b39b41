"""Modules: optional capabilities that place resources into the host home."""

from __future__ import annotations

import filecmp
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable

from hostext.plugin_system.manifest import ModuleDefinition, PluginDescription
from hostext.utils.exceptions import ModuleError

SAVE_SUFFIX = ".save"
NEW_SUFFIX = ".new"


@dataclass
class ModuleContext:
    """What a module needs to act on a host installation.

    Attributes:
        home: Host installation root
        logger: Logger modules report through
    """

    home: Path
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("modules"))


@runtime_checkable
class Module(Protocol):
    """Capability a plugin or the host exposes to the installer."""

    @property
    def id(self) -> str:
        ...

    def is_enabled(self, context: ModuleContext) -> bool:
        ...

    def enable(self, context: ModuleContext) -> None:
        ...

    def disable(self, context: ModuleContext, from_installer: bool) -> None:
        ...


class PluginModule:
    """Module whose state is the presence of its resource files in the home.

    A module without resources is always enabled. Otherwise it counts as
    enabled when any of its destinations exists.
    """

    def __init__(
            self,
            definition: ModuleDefinition,
            payload_root: Union[str, Path],
            plugin_id: Optional[str] = None
    ) -> None:
        self.definition = definition
        self.payload_root = Path(payload_root)
        self.plugin_id = plugin_id

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def name(self) -> str:
        return self.definition.name or self.definition.id

    def __repr__(self) -> str:
        return f"PluginModule(id={self.id!r}, plugin_id={self.plugin_id!r})"

    def is_enabled(self, context: ModuleContext) -> bool:
        if not self.definition.resources:
            return True
        return any((context.home / r.destination).exists() for r in self.definition.resources)

    def enable(self, context: ModuleContext) -> None:
        """Copy every resource into place.

        A destination that differs from the shipped content is either saved
        aside as ``<dest>.save`` and replaced, or left alone with the new
        content written to ``<dest>.new``. If a copy fails, files created by
        this call are removed before the error propagates.

        Raises:
            ModuleError: If a resource is missing or cannot be copied
        """
        created: List[Path] = []
        try:
            for resource in self.definition.resources:
                source = self.payload_root / resource.source
                destination = context.home / resource.destination
                if not source.is_file():
                    raise ModuleError(
                        f"Resource {resource.source} of module {self.id} not found",
                        module_id=self.id,
                        path=str(source),
                    )

                destination.parent.mkdir(parents=True, exist_ok=True)
                if not destination.exists():
                    shutil.copy2(source, destination)
                    created.append(destination)
                elif filecmp.cmp(source, destination, shallow=False):
                    continue
                elif resource.replace:
                    saved = destination.with_name(destination.name + SAVE_SUFFIX)
                    shutil.copy2(destination, saved)
                    shutil.copy2(source, destination)
                    context.logger.info(
                        f"Module {self.id} replaced {destination}, previous copy kept as {saved}",
                        extra={"module_id": self.id, "path": str(destination)},
                    )
                else:
                    fresh = destination.with_name(destination.name + NEW_SUFFIX)
                    shutil.copy2(source, fresh)
                    created.append(fresh)
                    context.logger.info(
                        f"Module {self.id} left changed {destination} in place, new content in {fresh}",
                        extra={"module_id": self.id, "path": str(destination)},
                    )
        except OSError as e:
            self._remove(created, context)
            raise ModuleError(f"Could not enable module {self.id}: {e}", module_id=self.id) from e
        except ModuleError:
            self._remove(created, context)
            raise

        context.logger.info(f"Enabled module {self.id}", extra={"module_id": self.id})

    @staticmethod
    def _remove(paths: List[Path], context: ModuleContext) -> None:
        for path in paths:
            try:
                path.unlink()
            except OSError as e:
                context.logger.warning(f"Could not remove {path}: {e}", extra={"path": str(path)})

    def saved_copies(self, context: ModuleContext) -> List[Path]:
        """Existing ``<dest>.save`` files a non-clean disable would replace."""
        paths = []
        for resource in self.definition.resources:
            destination = context.home / resource.destination
            saved = destination.with_name(destination.name + SAVE_SUFFIX)
            if destination.exists() and saved.exists():
                paths.append(saved)
        return paths

    def disable(
            self,
            context: ModuleContext,
            from_installer: bool = False,
            moved: Optional[List[Tuple[Path, Path]]] = None
    ) -> None:
        """Take the module's resources out of the home.

        Args:
            context: Module context
            from_installer: Delete resources outright (used when undoing an
                enable); otherwise each is renamed to ``<dest>.save``
            moved: Receives a ``(destination, saved)`` pair per renamed
                resource

        Raises:
            ModuleError: If a resource cannot be removed or renamed
        """
        for resource in self.definition.resources:
            destination = context.home / resource.destination
            if not destination.exists():
                continue
            try:
                if from_installer:
                    destination.unlink()
                else:
                    saved = destination.with_name(destination.name + SAVE_SUFFIX)
                    destination.replace(saved)
                    if moved is not None:
                        moved.append((destination, saved))
            except OSError as e:
                raise ModuleError(
                    f"Could not disable module {self.id}: {e}",
                    module_id=self.id,
                    path=str(destination),
                ) from e

        context.logger.info(f"Disabled module {self.id}", extra={"module_id": self.id})


def modules_of(description: PluginDescription, payload_root: Union[str, Path]) -> Dict[str, PluginModule]:
    """Module objects for every module a plugin declares."""
    return {
        definition.id: PluginModule(definition, payload_root, plugin_id=description.plugin_id)
        for definition in description.modules
    }
