"""Ask command: a single free-form question."""

from contextlib import aclosing

from monk_manager.agent.engine import AIEngine
from monk_manager.agent.prompt_builder import UserRequest
from monk_manager.ui.renderer import ConsoleRenderer


async def run_ask(
    engine: AIEngine, query: str, renderer: ConsoleRenderer, stream: bool = True
) -> str:
    request = UserRequest(query=query, stream=stream)
    if not stream:
        renderer.start_thinking()
        try:
            response = await engine.answer(request)
        finally:
            renderer.stop_thinking()
        renderer.print_markdown(response.text)
        return response.text

    renderer.start_thinking()
    try:
        async with aclosing(engine.answer_stream(request)) as chunks:
            async for chunk in chunks:
                renderer.print_stream(chunk)
    finally:
        renderer.end_stream()
    return engine.session.history[-1].content
