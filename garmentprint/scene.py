"""Scene collaborator: the narrow interface boundaries use to reach the viewer."""
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional

from garmentprint.naming import form_techpack_name
from garmentprint.types import ImageArray, Mesh


class SceneCollaborator(ABC):
    """Geometry lookup and re-render notification provided by the host viewer."""

    @abstractmethod
    def mark_dirty(self) -> None:
        """Request a re-render."""

    @abstractmethod
    def find_mesh_by_name(self, name: str) -> Optional[Mesh]:
        pass

    @abstractmethod
    def mesh_names(self) -> List[str]:
        pass

    def find_techpack_equivalent(self, name: str) -> Optional[Mesh]:
        return self.find_mesh_by_name(form_techpack_name(name))

    def render_techpack(self) -> Optional[ImageArray]:
        """Render the whole flattened garment, if the host supports it."""
        return None


class MeshScene(SceneCollaborator):
    """In-memory scene holding meshes by name and counting dirty notifications."""

    def __init__(
        self,
        meshes: Iterable[Mesh] = (),
        techpack_renderer: Optional[Callable[[], ImageArray]] = None,
    ):
        self._meshes: Dict[str, Mesh] = {}
        for mesh in meshes:
            self.add(mesh)
        self._techpack_renderer = techpack_renderer
        self.dirty_count = 0

    def add(self, mesh: Mesh) -> None:
        self._meshes[mesh.name] = mesh

    def mark_dirty(self) -> None:
        self.dirty_count += 1

    def find_mesh_by_name(self, name: str) -> Optional[Mesh]:
        return self._meshes.get(name)

    def mesh_names(self) -> List[str]:
        return list(self._meshes)

    def render_techpack(self) -> Optional[ImageArray]:
        if self._techpack_renderer is None:
            return None
        return self._techpack_renderer()
