import pytest

from services.render import RenderLoop


@pytest.fixture
def render_loop():
    loop = RenderLoop(name='test-render-loop').start()
    yield loop
    loop.stop()
