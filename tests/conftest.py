import asyncio
from typing import Callable, List, Optional, Sequence, Tuple, Union

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from codecrew.db.session import init_models
from codecrew.models import CallOptions, CheckResult, GatewayResponse
from codecrew.utils.background import BackgroundTaskTracker


Scripted = Union[str, Exception]


class FakeGateway:
    """Inference gateway double.

    Answers with ``responder(prompt)`` when given, otherwise pops scripted
    replies in order (repeating the last one). Exceptions in the script are
    raised instead of returned.
    """

    def __init__(
        self,
        replies: Sequence[Scripted] = (),
        responder: Optional[Callable[[str], Scripted]] = None,
        cost: float = 0.001,
        delay: float = 0.0,
    ):
        self.replies: List[Scripted] = list(replies)
        self.responder = responder
        self.cost = cost
        self.delay = delay
        self.calls: List[Tuple[str, CallOptions]] = []

    @property
    def prompts(self) -> List[str]:
        return [prompt for prompt, _ in self.calls]

    async def call(self, prompt: str, options: Optional[CallOptions] = None) -> GatewayResponse:
        self.calls.append((prompt, options or CallOptions()))
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.responder is not None:
            reply = self.responder(prompt)
        elif len(self.replies) > 1:
            reply = self.replies.pop(0)
        elif self.replies:
            reply = self.replies[0]
        else:
            reply = ""

        if isinstance(reply, Exception):
            raise reply
        return GatewayResponse(result=reply, model="fake-model", cost=self.cost, tier="fake", duration=1.0)


class FakeSandbox:
    """Validity sandbox double returning scripted verdicts (last one repeats)."""

    def __init__(self, verdicts: Sequence[CheckResult] = (CheckResult(passed=True),)):
        self.verdicts = list(verdicts)
        self.checked: List[dict] = []

    async def check(self, files):
        self.checked.append(dict(files))
        if len(self.verdicts) > 1:
            return self.verdicts.pop(0)
        return self.verdicts[0]


class RecordingSink:
    """Progress sink collecting every report."""

    def __init__(self):
        self.reports: List[Tuple[int, str]] = []

    def report(self, percent: int, message: str) -> None:
        self.reports.append((percent, message))


def fenced(path: str, content: str) -> str:
    lang = path.rsplit(".", 1)[-1]
    return f'```{lang} filename="{path}"\n{content}\n```'


APP_TSX = "export default function App() {\n  return <div>Todo</div>;\n}"


@pytest.fixture
def tracker():
    return BackgroundTaskTracker()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(bind=engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()
