from __future__ import annotations

import pytest
from playwright.async_api import Error as PlaywrightError

from orbital.automation.playwright_session import PlaywrightSession


class _Closable:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.closed = False

    async def close(self) -> None:
        self.closed = True
        if self.fail:
            raise PlaywrightError("Target page, context or browser has been closed")


class _Driver:
    def __init__(self) -> None:
        self.stopped = False

    async def stop(self) -> None:
        self.stopped = True


@pytest.mark.asyncio
async def test_close_tolerates_dead_browser() -> None:
    driver, browser, context = _Driver(), _Closable(), _Closable(fail=True)
    session = PlaywrightSession(driver, browser, context, page=object())

    await session.close()
    await session.close()

    assert context.closed
    assert driver.stopped
