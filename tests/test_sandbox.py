"""
Tests for validity-check sandboxes and dependency detection.
"""

import json

import httpx
import pytest

from codecrew.models import CheckResult
from codecrew.sandbox.checker import (
    ChainedSandbox,
    PistonSandbox,
    StaticSandbox,
    detect_packages,
    ensure_dependencies,
    find_unbalanced,
)

from conftest import APP_TSX, FakeSandbox


class TestFindUnbalanced:
    """Test bracket balance scanning."""

    def test_balanced_component(self):
        assert find_unbalanced(APP_TSX) is None

    def test_unclosed_brace(self):
        assert find_unbalanced("function App() {\n  return 1;\n") == "unclosed '{' opened on line 1"

    def test_unexpected_closer(self):
        assert find_unbalanced("const x = [1, 2);") == "unexpected ')' on line 1"

    def test_brackets_in_strings_and_comments_are_ignored(self):
        source = (
            'const a = "{[(";\n'
            "const b = `${x} }`;\n"
            "// stray ) in a comment\n"
            "/* and { here */\n"
            "const c = ')';\n"
        )
        assert find_unbalanced(source) is None

    def test_apostrophe_in_jsx_text(self):
        assert find_unbalanced("const el = <p>Don't panic</p>;") is None

    def test_urls_are_not_comments(self):
        assert find_unbalanced('fetch("https://api.test/todos").then((r) => r.json());') is None


class TestStaticSandbox:
    """Test local structure and syntax checks."""

    @pytest.mark.asyncio
    async def test_valid_react_set_passes(self):
        result = await StaticSandbox().check({"/App.tsx": APP_TSX, "/package.json": '{"name": "app"}'})
        assert result.passed is True
        assert result.diagnostics == ""

    @pytest.mark.asyncio
    async def test_missing_entry_point(self):
        result = await StaticSandbox().check({"/components/Button.tsx": "export const Button = () => null;"})
        assert result.passed is False
        assert "missing entry point" in result.diagnostics

    @pytest.mark.asyncio
    async def test_missing_default_export(self):
        result = await StaticSandbox().check({"/App.tsx": "export function App() {\n  return null;\n}"})
        assert result.passed is False
        assert 'missing "export default"' in result.diagnostics

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        result = await StaticSandbox().check({"/package.json": '{"name": '})
        assert result.passed is False
        assert "[syntax] /package.json: invalid JSON" in result.diagnostics

    @pytest.mark.asyncio
    async def test_unbalanced_script(self):
        result = await StaticSandbox().check({"/App.tsx": "export default function App() {"})
        assert result.passed is False
        assert "[syntax] /App.tsx: unclosed '{'" in result.diagnostics

    @pytest.mark.asyncio
    async def test_non_react_sets_skip_structure_check(self):
        result = await StaticSandbox().check({"/api/route.ts": "export async function GET() {\n  return 1;\n}"})
        assert result.passed is True

    @pytest.mark.asyncio
    async def test_empty_file(self):
        result = await StaticSandbox().check({"/schema.sql": "  "})
        assert result.passed is False
        assert "file is empty" in result.diagnostics


class TestPistonSandbox:
    """Test the remote TypeScript check."""

    @pytest.mark.asyncio
    async def test_compile_error_fails(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            stderr = "App.tsx(3,5): error TS1005: ';' expected."
            return httpx.Response(200, json={"compile": {"stderr": stderr}, "run": {"stderr": ""}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await PistonSandbox("https://piston.test/api/v2/piston", client=client).check({"/App.tsx": APP_TSX})

        assert result.passed is False
        assert result.diagnostics == "[syntax] /App.tsx: ';' expected."
        assert seen["url"] == "https://piston.test/api/v2/piston/execute"
        assert seen["body"]["language"] == "typescript"
        assert seen["body"]["files"][0]["name"] == "App.tsx"
        assert APP_TSX in seen["body"]["files"][0]["content"]

    @pytest.mark.asyncio
    async def test_clean_compile_passes(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"run": {"stdout": ""}}))
        async with httpx.AsyncClient(transport=transport) as client:
            result = await PistonSandbox("https://piston.test", client=client).check({"/App.tsx": APP_TSX})
        assert result.passed is True

    @pytest.mark.asyncio
    async def test_unavailable_service_passes(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await PistonSandbox("https://piston.test", client=client).check({"/App.tsx": APP_TSX})
        assert result.passed is True

    @pytest.mark.asyncio
    async def test_error_status_passes(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with httpx.AsyncClient(transport=transport) as client:
            result = await PistonSandbox("https://piston.test", client=client).check({"/App.tsx": APP_TSX})
        assert result.passed is True

    @pytest.mark.asyncio
    async def test_no_entry_point_skips_call(self):
        def handler(request):
            raise AssertionError("should not be called")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await PistonSandbox("https://piston.test", client=client).check({"/schema.sql": "x"})
        assert result.passed is True


class TestChainedSandbox:
    """Test sandbox chaining."""

    @pytest.mark.asyncio
    async def test_first_failure_wins(self):
        first = FakeSandbox([CheckResult(passed=False, diagnostics="first")])
        second = FakeSandbox([CheckResult(passed=False, diagnostics="second")])

        result = await ChainedSandbox(first, second).check({"/App.tsx": APP_TSX})
        assert result.diagnostics == "first"
        assert second.checked == []

    @pytest.mark.asyncio
    async def test_all_pass(self):
        result = await ChainedSandbox(FakeSandbox(), FakeSandbox()).check({"/App.tsx": APP_TSX})
        assert result.passed is True


class TestDependencies:
    """Test npm package detection and declaration."""

    def test_detects_bare_and_scoped_imports(self):
        files = {
            "/App.tsx": (
                "import React from 'react';\n"
                "import { create } from 'zustand';\n"
                "import { motion } from 'framer-motion/dist';\n"
                "import { Dialog } from '@headlessui/react';\n"
                "import Button from './components/Button';\n"
            ),
        }
        assert detect_packages(files) == ["zustand", "framer-motion", "@headlessui/react"]

    def test_tailwind_usage_implies_tooling(self):
        files = {"/styles.css": "@tailwind base;\n@tailwind utilities;"}
        assert detect_packages(files) == ["tailwindcss", "postcss", "autoprefixer"]

    def test_adds_missing_packages(self):
        files = {
            "/App.tsx": "import { create } from 'zustand';\n",
            "/styles.css": "@tailwind base;",
        }
        updated = ensure_dependencies(files)
        package = json.loads(updated["/package.json"])

        assert package["dependencies"] == {"zustand": "latest"}
        assert package["devDependencies"]["tailwindcss"] == "latest"
        assert "/package.json" not in files

    def test_keeps_declared_versions(self):
        files = {
            "/App.tsx": "import { create } from 'zustand';\n",
            "/package.json": json.dumps({"name": "app", "dependencies": {"zustand": "^4.5.0"}}),
        }
        assert ensure_dependencies(files) == files

    def test_rebuilds_invalid_package_json(self):
        files = {"/App.tsx": "import axios from 'axios';\n", "/package.json": "{not json"}
        package = json.loads(ensure_dependencies(files)["/package.json"])
        assert package["dependencies"] == {"axios": "latest"}

    def test_non_object_sections_are_replaced(self):
        files = {
            "/App.tsx": "import axios from 'axios';\n",
            "/package.json": json.dumps({"name": "app", "dependencies": ["react"], "devDependencies": "none"}),
        }
        package = json.loads(ensure_dependencies(files)["/package.json"])

        assert package["name"] == "app"
        assert package["dependencies"] == {"axios": "latest"}
        assert package["devDependencies"] == {}

    def test_nothing_to_declare(self):
        files = {"/App.tsx": APP_TSX}
        assert ensure_dependencies(files) == files
