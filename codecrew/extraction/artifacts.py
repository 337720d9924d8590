"""
Artifact extraction: turn free-form generated text into a file map.

Models format files in many ways. Each strategy below is a pure function
returning ``(path, content)`` pairs; ``extract_files`` runs them in priority
order and keeps the output of the first one that finds anything.
"""

import json
import logging
import re
from typing import Callable, Dict, List, Tuple

from ..models import FileArtifactSet
from ..utils.json_sanitizer import safe_parse_json


logger = logging.getLogger(__name__)

Extracted = List[Tuple[str, str]]


_FENCED_FILENAME = re.compile(
    r"(`{3,})[\w+-]*[ \t]*filename=[\"']?([^\"'\s]+)[\"']?[^\n]*\n([\s\S]*?)^\1(?!`)",
    re.MULTILINE,
)
_COMMENT_FILENAME = re.compile(
    r"```(\w+)\n//[ \t]*(?:filename:?[ \t]*)?(\S+\.\w+)[ \t]*\n([\s\S]*?)```"
)
_FILES_OBJECT = re.compile(r"\{\s*\"files\"\s*:")
_SEPARATOR = re.compile(
    r"//\s*=+\s*/?([^\s=]+\.[a-zA-Z]+)\s*=+[ \t]*\n([\s\S]*?)(?=//\s*=+\s*/?[\w/.-]+\.[a-zA-Z]+|\Z)"
)
_HEADER_BLOCK = re.compile(
    r"(?:###?[ \t]+|\*\*)`?/?([\w/.-]+\.(?:tsx?|jsx?|css|sql|json|html|md|py))`?(?:\*\*)?[ \t:]*\n+```[\w+-]*\n([\s\S]*?)```"
)
_LANG_BLOCK = re.compile(r"```(tsx?|jsx?|css|sql|json|html|prisma)\n([\s\S]*?)```")
_ANY_BLOCK = re.compile(r"```(?:[\w+-]+)?\n([\s\S]*?)```")
_EXPORTED_FUNCTION = re.compile(r"export (?:default )?function (\w+)")
_BACKTICK_RUN = re.compile(r"`+")

_JUNK_NAMES = re.compile(r"^(?:file|data)\d+\.json$", re.IGNORECASE)
_JUNK_BODIES = {"...", "// TODO", "/* TODO */"}


def normalize_path(path: str) -> str:
    """Canonical artifact path: stripped, forward slashes, leading ``/``."""
    path = path.strip().replace("\\", "/")
    if path.startswith("./"):
        path = path[2:]
    return path if path.startswith("/") else f"/{path}"


# Strategies, highest priority first

def fenced_filename_blocks(text: str) -> Extracted:
    """```tsx filename="/App.tsx" ... ```

    The block ends at a line opening with a fence of the same length, so
    content may itself hold shorter fences.
    """
    pairs = []
    for match in _FENCED_FILENAME.finditer(text):
        content = match.group(3)
        if content.endswith("\n"):
            content = content[:-1]
        pairs.append((match.group(2), content))
    return pairs


def comment_filename_blocks(text: str) -> Extracted:
    """A code block whose first line is ``// path.ext`` or ``// filename: path.ext``."""
    return [(m.group(2), m.group(3).strip()) for m in _COMMENT_FILENAME.finditer(text)]


def json_file_map(text: str) -> Extracted:
    """``{"files": {"/App.tsx": "..."}}`` embedded anywhere in the text."""
    decoder = json.JSONDecoder(strict=False)
    parsed = None
    for match in _FILES_OBJECT.finditer(text):
        try:
            parsed, _ = decoder.raw_decode(text, match.start())
            break
        except json.JSONDecodeError:
            continue

    if parsed is None and '"files"' in text:
        parsed = safe_parse_json(text)

    if not isinstance(parsed, dict) or not isinstance(parsed.get("files"), dict):
        return []
    return [(p, c) for p, c in parsed["files"].items() if isinstance(c, str)]


def separator_sections(text: str) -> Extracted:
    """Sections introduced by ``// ===== /path.ext =====`` lines."""
    return [(m.group(1), m.group(2).strip()) for m in _SEPARATOR.finditer(text)]


def header_blocks(text: str) -> Extracted:
    """``### /components/Navbar.tsx`` or ``**Navbar.tsx**`` followed by a code block."""
    return [(m.group(1), m.group(2).strip()) for m in _HEADER_BLOCK.finditer(text)]


def _infer_filename(lang: str, content: str, counter: int) -> Tuple[str, int]:
    if lang in ("sql", "prisma"):
        if "CREATE TABLE" in content:
            return "/schema.sql", counter
        if "INSERT INTO" in content:
            return "/seed.sql", counter
        if "SELECT" in content:
            return "/queries.sql", counter
        return f"/migrations/00{counter + 1}_create_tables.sql", counter
    if lang == "css":
        return "/styles.css", counter
    if lang == "json" and '"dependencies"' in content:
        return "/package.json", counter
    if "export default function App" in content:
        return "/App.tsx", counter
    if "export async function GET" in content or "export async function POST" in content:
        return "/api/route.ts", counter
    if "export function" in content or "export default function" in content:
        match = _EXPORTED_FUNCTION.search(content)
        if match:
            return f"/components/{match.group(1)}.tsx", counter
        counter += 1
        return f"/components/Component{counter}.tsx", counter
    if "const" in content and "interface" in content:
        return "/types.ts", counter
    counter += 1
    return f"/file{counter}.{lang}", counter


def inferred_blocks(text: str) -> Extracted:
    """Unnamed code blocks, named from their language and content."""
    pairs = []
    seen = set()
    counter = 0
    for match in _LANG_BLOCK.finditer(text):
        content = match.group(2).strip()
        filename, counter = _infer_filename(match.group(1), content, counter)
        if filename not in seen:
            seen.add(filename)
            pairs.append((filename, content))
    return pairs


STRATEGIES: List[Callable[[str], Extracted]] = [
    fenced_filename_blocks,
    comment_filename_blocks,
    json_file_map,
    separator_sections,
    header_blocks,
    inferred_blocks,
]


def extract_files(text: str) -> FileArtifactSet:
    """
    Extract a path -> content map from generated text.

    Args:
        text: Raw model output

    Returns:
        File map keyed by canonical path; empty when the text holds no code
    """
    if not text:
        return {}

    for strategy in STRATEGIES:
        pairs = strategy(text)
        if pairs:
            files: FileArtifactSet = {}
            for path, content in pairs:
                files[normalize_path(path)] = content
            logger.debug(f"Extracted {len(files)} files via {strategy.__name__}: {list(files)}")
            return files

    fallback = _ANY_BLOCK.search(text)
    if fallback:
        return {"/App.tsx": fallback.group(1).strip()}
    return {}


def serialize_files(files: FileArtifactSet) -> str:
    """Render a file map as filename-tagged fenced blocks.

    Each fence is longer than any backtick run in its content.
    """
    blocks = []
    for path, content in files.items():
        lang = path.rsplit(".", 1)[-1] if "." in path else ""
        longest = max((len(run) for run in _BACKTICK_RUN.findall(content)), default=0)
        fence = "`" * max(3, longest + 1)
        blocks.append(f'{fence}{lang} filename="{path}"\n{content}\n{fence}')
    return "\n\n".join(blocks)


def is_junk_file(path: str, content: str) -> bool:
    """Placeholder files: templated names or bodies with nothing in them."""
    filename = path.rsplit("/", 1)[-1]
    if _JUNK_NAMES.match(filename):
        return True
    trimmed = (content or "").strip()
    return not trimmed or trimmed in _JUNK_BODIES


def clean_files(files: FileArtifactSet) -> FileArtifactSet:
    """Drop placeholder files."""
    cleaned = {path: content for path, content in files.items() if not is_junk_file(path, content)}
    dropped = len(files) - len(cleaned)
    if dropped:
        logger.info(f"Dropped {dropped} placeholder files")
    return cleaned


def get_file_tree(files: FileArtifactSet) -> str:
    """Render a sorted, indented tree of the file paths, directories once each."""
    lines = []
    listed: set = set()
    for path in sorted(files):
        parts = path.strip("/").split("/")
        for depth in range(len(parts) - 1):
            directory = tuple(parts[: depth + 1])
            if directory not in listed:
                listed.add(directory)
                lines.append("  " * depth + parts[depth] + "/")
        lines.append("  " * (len(parts) - 1) + parts[-1])
    return "\n".join(lines)
