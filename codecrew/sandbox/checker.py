"""
Validity-check sandboxes for generated artifact sets.

- StaticSandbox: local structure, JSON and bracket-balance checks
- PistonSandbox: TypeScript compile of the entry component via a Piston API
- ChainedSandbox: runs sandboxes in order, stopping at the first failure
"""

import json
import logging
import re
from typing import Dict, List, Optional, Protocol, Tuple

import httpx

from ..core.config import settings
from ..models import CheckResult, FileArtifactSet


logger = logging.getLogger(__name__)


ENTRY_POINTS = ("/App.tsx", "/App.jsx", "/App.js")
SCRIPT_EXTENSIONS = ("ts", "tsx", "js", "jsx")
REACT_EXTENSIONS = ("tsx", "jsx")

CORE_PACKAGES = {"react", "react-dom", "next", "vite"}
TAILWIND_DEPS = ("tailwindcss", "postcss", "autoprefixer")

_IMPORT = re.compile(r"import\s+(?:[\s\S]*?from\s+)?['\"]([^'\"./][^'\"]*)['\"]")
_TAILWIND_DIRECTIVE = re.compile(r"@tailwind\s+(base|components|utilities)")
_TAILWIND_CLASSNAME = re.compile(
    r"className=[\"'][^\"']*(?:bg-|text-|flex|grid|p-\d|m-\d|w-|h-|rounded|shadow|border)"
)
_TS_ERROR = re.compile(r"error TS\d+: (.+)")

_PAIRS = {")": "(", "]": "[", "}": "{"}
_EXPRESSION_CHARS = set("=(,:[{?!&|+;")


class ValiditySandbox(Protocol):
    async def check(self, files: FileArtifactSet) -> CheckResult:
        ...


def _extension(path: str) -> str:
    return path.rsplit(".", 1)[-1].lower() if "." in path else ""


def find_unbalanced(source: str) -> Optional[str]:
    """
    Return a description of the first unbalanced bracket, or None.

    Comments, double-quoted strings and template literals are skipped.
    Single quotes only open a string in expression position so apostrophes
    in JSX text are not mistaken for string delimiters.
    """
    stack: List[Tuple[str, int]] = []
    line = 1
    i = 0
    n = len(source)
    last_code_char = ""

    while i < n:
        ch = source[i]
        if ch == "\n":
            line += 1
            i += 1
            continue

        if source.startswith("//", i) and (i == 0 or source[i - 1] != ":"):
            end = source.find("\n", i)
            i = n if end == -1 else end
            continue
        if source.startswith("/*", i):
            end = source.find("*/", i + 2)
            line += source.count("\n", i, n if end == -1 else end)
            i = n if end == -1 else end + 2
            continue

        if ch in ('"', "`") or (ch == "'" and (last_code_char in _EXPRESSION_CHARS or last_code_char == "")):
            j = i + 1
            while j < n and source[j] != ch:
                if source[j] == "\\":
                    j += 2
                    continue
                if source[j] == "\n" and ch != "`":
                    break
                j += 1
            line += source.count("\n", i, min(j, n))
            i = j + 1 if j < n and source[j] == ch else j
            last_code_char = ch
            continue

        if ch in "([{":
            stack.append((ch, line))
        elif ch in ")]}":
            if not stack or stack[-1][0] != _PAIRS[ch]:
                return f"unexpected '{ch}' on line {line}"
            stack.pop()

        if not ch.isspace():
            last_code_char = ch
        i += 1

    if stack:
        opener, opened_at = stack[-1]
        return f"unclosed '{opener}' opened on line {opened_at}"
    return None


class StaticSandbox:
    """Local structural checks that need no external service."""

    async def check(self, files: FileArtifactSet) -> CheckResult:
        errors = self.check_structure(files)

        for path, content in files.items():
            ext = _extension(path)
            if not content.strip():
                errors.append(f"[structure] {path}: file is empty")
            elif ext == "json":
                try:
                    json.loads(content)
                except json.JSONDecodeError as e:
                    errors.append(f"[syntax] {path}: invalid JSON ({e.msg} at line {e.lineno})")
            elif ext in SCRIPT_EXTENSIONS:
                problem = find_unbalanced(content)
                if problem:
                    errors.append(f"[syntax] {path}: {problem}")

        return CheckResult(passed=not errors, diagnostics="\n".join(errors))

    @staticmethod
    def check_structure(files: FileArtifactSet) -> List[str]:
        """A React artifact set needs an entry component with a default export."""
        if not any(_extension(p) in REACT_EXTENSIONS for p in files):
            return []

        entry = next((p for p in ENTRY_POINTS if p in files), None)
        if entry is None:
            return [
                "[structure] /App.tsx: missing entry point. "
                "Create /App.tsx with: export default function App() { ... }"
            ]
        if "export default" not in files[entry]:
            return [f'[structure] {entry}: missing "export default"']
        return []


class PistonSandbox:
    """TypeScript syntax check of the entry component through a Piston API.

    An unreachable or failing Piston service does not fail the check.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.base_url = (base_url or settings.PISTON_API_URL).rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _execute(self, payload: Dict) -> httpx.Response:
        url = f"{self.base_url}/execute"
        if self._client is not None:
            return await self._client.post(url, json=payload)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=payload)

    async def check(self, files: FileArtifactSet) -> CheckResult:
        entry = next((p for p in ENTRY_POINTS if p in files), None)
        if entry is None:
            return CheckResult(passed=True)

        source = (
            "declare const React: any;\n"
            "declare function useState<T>(initial: T): [T, (v: T) => void];\n"
            "declare function useEffect(fn: () => void, deps?: any[]): void;\n\n"
            f"{files[entry]}\n"
        )
        payload = {
            "language": "typescript",
            "version": "*",
            "files": [{"name": entry.lstrip("/"), "content": source}],
            "compile_timeout": int(self.timeout * 1000),
            "run_timeout": int(self.timeout * 1000),
        }

        try:
            response = await self._execute(payload)
        except httpx.HTTPError as e:
            logger.warning(f"Piston unavailable, skipping syntax check: {e}")
            return CheckResult(passed=True)

        if response.status_code != 200:
            logger.warning(f"Piston returned {response.status_code}, skipping syntax check")
            return CheckResult(passed=True)

        result = response.json()
        errors = []
        compile_stderr = (result.get("compile") or {}).get("stderr") or ""
        if compile_stderr:
            match = _TS_ERROR.search(compile_stderr)
            errors.append(f"[syntax] {entry}: {match.group(1) if match else compile_stderr[:200]}")

        run_stderr = (result.get("run") or {}).get("stderr") or ""
        if run_stderr:
            errors.append(f"[runtime] {entry}: {run_stderr[:200]}")

        return CheckResult(passed=not errors, diagnostics="\n".join(errors))


class ChainedSandbox:
    """Run sandboxes in order; the first failing one decides."""

    def __init__(self, *sandboxes: ValiditySandbox):
        self.sandboxes = sandboxes

    async def check(self, files: FileArtifactSet) -> CheckResult:
        for sandbox in self.sandboxes:
            result = await sandbox.check(files)
            if not result.passed:
                return result
        return CheckResult(passed=True)


def build_sandbox() -> ValiditySandbox:
    """Sandbox from settings: static checks, plus Piston when enabled."""
    if settings.ENABLE_REMOTE_SANDBOX:
        return ChainedSandbox(StaticSandbox(), PistonSandbox())
    return StaticSandbox()


def _package_name(import_path: str) -> str:
    parts = import_path.split("/")
    if import_path.startswith("@"):
        return "/".join(parts[:2])
    return parts[0]


def detect_packages(files: FileArtifactSet) -> List[str]:
    """npm packages imported (or implied by Tailwind usage) by the artifact set."""
    detected: Dict[str, None] = {}

    for path, content in files.items():
        ext = _extension(path)
        if not content or ext not in ("tsx", "ts", "jsx", "js", "css", "scss"):
            continue

        for match in _IMPORT.finditer(content):
            name = _package_name(match.group(1))
            if name not in CORE_PACKAGES:
                detected[name] = None

        if ext in ("css", "scss") and _TAILWIND_DIRECTIVE.search(content):
            detected.update(dict.fromkeys(TAILWIND_DEPS))
        if ext in REACT_EXTENSIONS and _TAILWIND_CLASSNAME.search(content):
            detected.update(dict.fromkeys(TAILWIND_DEPS))

    return list(detected)


def ensure_dependencies(files: FileArtifactSet) -> FileArtifactSet:
    """
    Declare every imported npm package in ``/package.json``.

    Missing packages are added at ``latest``; Tailwind tooling goes to
    devDependencies. Returns a new file map; the input is not modified.
    """
    updated = dict(files)
    packages = detect_packages(files)
    if not packages:
        return updated

    package_json = {
        "name": "generated-app",
        "version": "1.0.0",
        "dependencies": {},
        "devDependencies": {},
    }
    if updated.get("/package.json"):
        try:
            parsed = json.loads(updated["/package.json"])
            if isinstance(parsed, dict):
                package_json = parsed
                for section in ("dependencies", "devDependencies"):
                    declared = package_json.get(section)
                    if declared and not isinstance(declared, dict):
                        logger.warning(f"/package.json {section} is not an object, replacing it")
                        declared = None
                    package_json[section] = declared or {}
        except json.JSONDecodeError:
            logger.warning("Failed to parse /package.json, rebuilding it")

    added = 0
    for package in packages:
        if package in package_json["dependencies"] or package in package_json["devDependencies"]:
            continue
        section = "devDependencies" if package in TAILWIND_DEPS else "dependencies"
        package_json[section][package] = "latest"
        added += 1

    if added:
        updated["/package.json"] = json.dumps(package_json, indent=2)
        logger.info(f"Auto-added {added} missing packages to /package.json")

    return updated
