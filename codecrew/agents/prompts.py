"""
Prompt builders for every generation call in the pipeline.

The exact wording is not load-bearing; the structure is. Every code-producing
prompt asks for filename-tagged fenced blocks so the artifact extractor's
first strategy applies.
"""

import json
from typing import Dict, List, Optional, Tuple, assert_never

from ..extraction.artifacts import get_file_tree
from ..models import Capability, FileArtifactSet, SubTask


OUTPUT_FORMAT = """
RESPONSE FORMAT:
1. One or two sentences describing your approach.
2. Every file in its own fenced code block with a filename attribute:
```tsx filename="/App.tsx"
// code here
```
3. A one-line closing summary.
Never leave placeholder bodies such as "..." or "// TODO".
"""

RUNTIME_RULES = """
RUNTIME RULES:
- /App.tsx is the entry point and must contain "export default function App()"
- npm packages are allowed; declare them in /package.json
- Tailwind CSS is available for styling
- Use functional components and hooks
"""


def build_decomposition_prompt(request: str, session_context: Optional[str] = None) -> str:
    """Planning prompt restricted to the closed capability set."""
    history = f"\nPrevious conversation:\n{session_context}\n" if session_context else ""
    return f"""You are a project planner. Decompose this user request into sub-tasks for specialized agents.

Available agents:
- design: UI/UX design, layout, color schemes, component structure
- frontend: React code, components, styling
- backend: API routes, server logic, authentication
- database: Database schema, migrations, queries
- research: Best practices, libraries, examples
{history}
User Request: "{request}"

Rules:
- Use only the agents listed above.
- Every dependency of a task must be in an earlier parallel group than the task.
- Tasks in the same parallel group must not depend on each other.

Return JSON ONLY (no markdown):
{{
  "projectName": "short-project-name",
  "summary": "Brief description of what will be built",
  "subTasks": [
    {{"id": "task-1", "agent": "design", "description": "What this agent should do", "dependencies": [], "priority": "high"}}
  ],
  "parallelGroups": [["task-1", "task-2"], ["task-3"]]
}}"""


def build_agent_prompt(task: SubTask, context: str = "") -> str:
    """Capability-specific prompt for one sub-task."""
    base = f"You are a specialized {task.capability.value} agent.\n\nTask: {task.description}\n"
    if context:
        base += f"\nContext from other agents:\n{context}\n"

    capability = task.capability
    if capability is Capability.design:
        return base + f"""
Produce a UI/UX specification AND the React layout components that realise it:
- Component hierarchy
- Color scheme (hex codes)
- Typography
- Layout structure
- Interactive elements
{OUTPUT_FORMAT}"""
    elif capability is Capability.frontend:
        return base + f"""
{RUNTIME_RULES}
For larger apps split the code across files: /package.json, /App.tsx,
/components/*.tsx and /styles.css.
{OUTPUT_FORMAT}"""
    elif capability is Capability.backend:
        return base + f"""
Generate API routes and server logic in TypeScript:
- Route handlers (e.g. /api/route.ts exporting GET/POST)
- Error handling
- Input validation
{OUTPUT_FORMAT}"""
    elif capability is Capability.database:
        return base + f"""
Design the database schema:
- Table definitions (SQL or Prisma)
- Relationships
- Indexes
- Migrations and seed data
{OUTPUT_FORMAT}
Example:
```sql filename="/schema.sql"
CREATE TABLE users (...);
```"""
    elif capability is Capability.research:
        return base + """
Research and provide:
- Best practices for this use case
- Recommended libraries/packages
- Example implementations
- Potential gotchas

Format as actionable markdown recommendations. Code files are optional."""
    else:
        assert_never(capability)


def build_fast_prompt(
    request: str,
    session_context: Optional[str] = None,
    reference: Optional[str] = None,
) -> str:
    """Single-pass prompt for fast mode."""
    sections = [f"You are a senior full-stack engineer. Build the following in one pass.\n\nRequest: {request}"]
    if reference:
        sections.append(f"[Reference Examples]\n{reference}")
    sections.append(RUNTIME_RULES.strip())
    sections.append(OUTPUT_FORMAT.strip())
    if session_context:
        sections.append(
            f"PREVIOUS CONVERSATION:\n{session_context}\n\n"
            "(Use this context to keep style and earlier choices consistent)"
        )
    return "\n\n".join(sections)


def build_fix_prompt(description: str, files: FileArtifactSet, diagnostics: str) -> str:
    """Repair prompt for the self-healing loop."""
    return f"""Fix these errors in the generated code.

Task: {description}

Errors:
{diagnostics}

REQUIREMENTS:
1. /App.tsx must exist with "export default function App()" for React apps
2. If using npm packages, include them in /package.json
3. Return the COMPLETE set of files, not only the changed ones

Project structure:
{get_file_tree(files)}

Current files:
{json.dumps(files, indent=2)}

Return ONLY valid JSON: {{"files": {{"/path": "content"}}}}"""


def build_review_prompt(task: SubTask, output: str) -> str:
    """One-shot review prompt for capabilities outside the repair loop."""
    return f"""Lead reviewer. Critique and correct this {task.capability.value} output.

Task: {task.description}

Output:
{output}

If it is correct, return the files unchanged. If not, rewrite them.
{OUTPUT_FORMAT}"""


def build_consolidation_prompt(
    versions: Dict[str, List[Tuple[str, str]]],
    merged: FileArtifactSet,
    version_chars: int = 4000,
) -> str:
    """
    Merge prompt showing every competing version of each conflicting path.

    Args:
        versions: Conflicting path -> ``(task_id, content)`` in execution order
        merged: Last-write-wins merge of all files, listed as project context
        version_chars: Per-version preview length
    """
    sections = []
    for path, candidates in versions.items():
        sources = ", ".join(task_id for task_id, _ in candidates)
        blocks = [f"File: {path} ({len(candidates)} versions from: {sources})"]
        for task_id, content in candidates:
            preview = content[:version_chars] + ("..." if len(content) > version_chars else "")
            blocks.append(f"--- version from {task_id} ---\n{preview}")
        sections.append("\n\n".join(blocks))
    conflicts = "\n\n".join(sections)

    return f"""Merge specialist. Resolve these file conflicts between agents:

{conflicts}

Project structure:
{get_file_tree(merged)}

Instructions:
1. If the versions are complementary, combine them
2. If they contradict each other, keep the most complete version
3. Output JSON with the resolved files only:
{{"files": {{"/path": "content"}}}}"""
