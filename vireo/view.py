"""
View lookup for Vireo's ``render``.
"""

import inspect
import logging
import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .exceptions import ViewError

logger = logging.getLogger(__name__)


class View:
    """
    A template file resolved against one or more view directories.

    Args:
        name: View name, with or without extension ("users/show", "email.html")
        default_engine: Extension used when ``name`` has none (the "view engine" setting)
        root: View directory, or a list of directories searched in order
        engines: Mapping of ".ext" to render callables ``fn(path, options)``

    Attributes:
        ext: Resolved extension, with leading dot
        engine: Render callable for ``ext``
        path: Resolved file path, None when the view does not exist
    """

    def __init__(
        self,
        name: str,
        default_engine: Optional[str] = None,
        root: Union[str, List[str], None] = None,
        engines: Optional[Mapping[str, Callable[..., Any]]] = None,
    ):
        self.name = name
        self.root = root if root is not None else os.getcwd()
        self.default_engine = default_engine
        self.ext = os.path.splitext(name)[1]
        engines = engines if engines is not None else {}

        if not self.ext and not default_engine:
            raise ViewError("No default engine was specified and no extension was provided.")

        file_name = name
        if not self.ext:
            # get extension from default engine name
            self.ext = default_engine if default_engine.startswith(".") else f".{default_engine}"
            file_name += self.ext

        engine = engines.get(self.ext)
        if engine is None:
            raise ViewError(f'No engine registered for "{self.ext}" views; use app.engine("{self.ext[1:]}", fn).')

        self.engine = engine
        self.path: Optional[str] = self.lookup(file_name)

    @property
    def roots(self) -> List[str]:
        return list(self.root) if isinstance(self.root, (list, tuple)) else [self.root]

    def lookup(self, name: str) -> Optional[str]:
        """Find ``name`` under the view roots, trying "<name>" then "<name>/index<ext>"."""
        logger.debug('lookup "%s"', name)

        for root in self.roots:
            loc = os.path.abspath(os.path.join(root, name))
            path = self._resolve(os.path.dirname(loc), os.path.basename(loc))
            if path:
                return path

        return None

    def _resolve(self, directory: str, file: str) -> Optional[str]:
        # <path>.<ext>
        path = os.path.join(directory, file)
        if os.path.isfile(path):
            return path

        # <path>/index.<ext>
        stem = file[: -len(self.ext)] if file.endswith(self.ext) else file
        path = os.path.join(directory, stem, f"index{self.ext}")
        if os.path.isfile(path):
            return path

        return None

    async def render(self, options: Dict[str, Any]) -> str:
        """Render the view; the engine may return a string or an awaitable."""
        logger.debug('render "%s"', self.path)
        result = self.engine(self.path, options)
        if inspect.isawaitable(result):
            result = await result
        return result

    def lookup_error(self) -> ViewError:
        roots = self.roots
        if len(roots) > 1:
            dirs = 'directories "' + '", "'.join(roots[:-1]) + f'" or "{roots[-1]}"'
        else:
            dirs = f'directory "{roots[0]}"'
        return ViewError(f'Failed to lookup view "{self.name}" in views {dirs}')

    def __repr__(self) -> str:
        return f"<View {self.name!r} path={self.path!r}>"
