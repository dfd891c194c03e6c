from __future__ import annotations
import re

from ..core.errors import SourceTransformError

# a top-level type declaration starting its own line; comments and string
# literals that mention "class" do not count
_CLASS_DECL = re.compile(
    r"^(?P<indent>[ \t]*)(?P<mods>(?:(?:public|final|abstract|strictfp)\s+)*)class\s+[A-Za-z_$][\w$]*",
    re.MULTILINE,
)


def java_main_class(code: str) -> str:
    """Rename the entry class to ``Main`` so it compiles as Main.java.

    The public class wins; without one the first class declaration is used.
    """
    decls = list(_CLASS_DECL.finditer(code))
    if not decls:
        raise SourceTransformError("Error: Java class name not found.")
    target = next((m for m in decls if "public" in m.group("mods").split()), decls[0])
    renamed = f"{target.group('indent')}{target.group('mods')}class Main"
    return code[:target.start()] + renamed + code[target.end():]
