# Tests for the prompt_toolkit input layer

import pytest
from prompt_toolkit import PromptSession
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput

from monk_manager.ui.input import InputManager


class TestInputManager:
    @pytest.fixture
    def pipe(self):
        with create_pipe_input() as pipe_input:
            yield pipe_input

    @pytest.fixture
    def manager(self, pipe):
        return InputManager(PromptSession(input=pipe, output=DummyOutput()))

    @pytest.mark.asyncio
    async def test_reads_a_line(self, pipe, manager):
        pipe.send_text("explain this\r")
        assert await manager.read_input() == "explain this"

    @pytest.mark.asyncio
    async def test_end_of_input_returns_none(self, pipe, manager):
        pipe.send_text("\x04")
        assert await manager.read_input() is None

    @pytest.mark.asyncio
    async def test_interrupt_returns_none(self, pipe, manager):
        pipe.send_text("\x03")
        assert await manager.read_input() is None
