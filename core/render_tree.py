#!/usr/bin/env python3
"""
Render Tree Module
Interface to the renderable scene graph kept in lock-step with the document,
plus an in-memory implementation used headless and in tests.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class RenderTree(ABC):
    """Abstract render-tree collaborator

    Object ids are opaque integers owned by the implementation. The root
    object exists from construction and is never removed.
    """

    @property
    @abstractmethod
    def root_id(self) -> int:
        """Id of the render root"""
        pass

    @abstractmethod
    def create_object(self, transform, name=None, mesh=None) -> int:
        """Create a detached object

        Args:
            transform: 4x4 local matrix
            name: Display name
            mesh: Mesh placeholder payload, or None for a plain group

        Returns:
            int: New object id
        """
        pass

    @abstractmethod
    def reparent(self, object_id, new_parent_id, index=None):
        """Attach an object under a new parent (detaching it first)"""
        pass

    @abstractmethod
    def remove_object(self, object_id):
        """Detach and forget an object and its descendants"""
        pass

    @abstractmethod
    def dispose_resources(self, object_id):
        """Release geometry/GPU resources held by an object"""
        pass

    @abstractmethod
    def set_transform(self, object_id, transform):
        """Replace the local matrix of an object"""
        pass

    def clear(self):
        """Remove every object below the root"""
        for child_id in list(self.children_of(self.root_id)):
            self.dispose_resources(child_id)
            self.remove_object(child_id)

    @abstractmethod
    def children_of(self, object_id) -> List[int]:
        pass


@dataclass
class RenderObject:
    id: int
    name: Optional[str]
    transform: np.ndarray
    mesh: Any = None
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
    disposed: bool = False


class SceneGraph(RenderTree):
    """In-memory render tree"""

    def __init__(self):
        self._next_id = 1
        self.objects: Dict[int, RenderObject] = {}
        root = RenderObject(id=0, name='root', transform=np.identity(4))
        self.objects[0] = root

    @property
    def root_id(self) -> int:
        return 0

    def create_object(self, transform, name=None, mesh=None) -> int:
        object_id = self._next_id
        self._next_id += 1
        self.objects[object_id] = RenderObject(
            id=object_id,
            name=name,
            transform=np.array(transform, dtype=float),
            mesh=mesh,
        )
        return object_id

    def get(self, object_id) -> RenderObject:
        obj = self.objects.get(object_id)
        if obj is None:
            raise KeyError(f"Render object {object_id} does not exist")
        return obj

    def reparent(self, object_id, new_parent_id, index=None):
        obj = self.get(object_id)
        new_parent = self.get(new_parent_id)
        if obj.parent is not None:
            self.objects[obj.parent].children.remove(object_id)
        if index is None:
            new_parent.children.append(object_id)
        else:
            new_parent.children.insert(index, object_id)
        obj.parent = new_parent_id

    def remove_object(self, object_id):
        if object_id == self.root_id:
            raise ValueError("The render root cannot be removed")
        obj = self.get(object_id)
        if obj.parent is not None:
            self.objects[obj.parent].children.remove(object_id)
        stack = [object_id]
        while stack:
            current = self.objects.pop(stack.pop())
            stack.extend(current.children)

    def dispose_resources(self, object_id):
        stack = [object_id]
        while stack:
            obj = self.get(stack.pop())
            if obj.mesh is not None:
                obj.mesh = None
                obj.disposed = True
            stack.extend(obj.children)

    def set_transform(self, object_id, transform):
        self.get(object_id).transform = np.array(transform, dtype=float)

    def children_of(self, object_id) -> List[int]:
        return list(self.get(object_id).children)

    def count(self) -> int:
        """Number of objects excluding the root"""
        return len(self.objects) - 1

    def world_matrix(self, object_id) -> np.ndarray:
        matrix = np.identity(4)
        current = object_id
        while current is not None:
            obj = self.objects[current]
            matrix = obj.transform @ matrix
            current = obj.parent
        return matrix
