# auctionwatch/session.py
"""Log in once with a real browser and export the session for workers.

The site's post-login redirect is not a reliable success signal, so success
is verified by loading a known detail page and looking for the parcel label.
"""
import os
from typing import Optional
from dotenv import load_dotenv
from playwright.sync_api import sync_playwright, Error as PWError

from .errors import AuthError
from .schemas import Credentials, SessionState
from .utils import logger, now_utc

load_dotenv()
BASE_URL = os.getenv("AUCTION_BASE_URL", "https://www.waynecountytreasurermi.com").rstrip("/")
PROBE_ID = os.getenv("AUCTION_PROBE_ID", "250900001")
HEADLESS = os.getenv("HEADLESS", "1") == "1"

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
VIEWPORT = {"width": 1280, "height": 720}

USERNAME_SELECTOR = "#txtUserName"
PASSWORD_SELECTOR = "#txtPassword"
LOGIN_BUTTON_SELECTOR = "#btnLogin"
LOGIN_ERROR_SELECTOR = ".error-message, .validation-summary-errors"
PROBE_MARKER_SELECTOR = "#ContentPlaceHolder1_lblPIN"


def detail_url(base_url: str, auction_id) -> str:
    return f"{base_url}/AuctionPropertyDetails.aspx?AI_ID={auction_id}"


def submit_login(page, credentials: Credentials, base_url: str = BASE_URL) -> None:
    page.goto(base_url, wait_until="networkidle")
    if not page.query_selector(USERNAME_SELECTOR):
        link = page.query_selector('a[href*="login"]')
        if link:
            link.click()
            page.wait_for_load_state("networkidle")
    page.fill(USERNAME_SELECTOR, credentials.username)
    page.fill(PASSWORD_SELECTOR, credentials.password)
    page.click(LOGIN_BUTTON_SELECTOR)
    page.wait_for_load_state("networkidle")


def verify_session(page, base_url: str = BASE_URL, probe_id=PROBE_ID) -> None:
    """Raise AuthError unless a detail page renders for this session."""
    error_el = page.query_selector(LOGIN_ERROR_SELECTOR)
    reason = error_el.inner_text().strip() if error_el else None
    page.goto(detail_url(base_url, probe_id), wait_until="networkidle")
    if not page.query_selector(PROBE_MARKER_SELECTOR):
        raise AuthError(f"login failed: {reason}" if reason else "login failed")


def export_session(context, base_url: str = BASE_URL) -> SessionState:
    return SessionState(
        base_url=base_url,
        cookies=context.cookies(),
        storage_state=context.storage_state(),
        created_at=now_utc(),
    )


def authenticate(credentials: Optional[Credentials] = None, base_url: str = BASE_URL,
                 headless: bool = HEADLESS) -> SessionState:
    """Establish one authenticated session; failures are not retried."""
    credentials = credentials or Credentials.from_env()
    if credentials is None:
        raise AuthError("AUCTION_USER / AUCTION_PASSWORD not set")
    logger.info("Logging in to %s as %s", base_url, credentials.username)
    with sync_playwright() as p:
        browser = p.chromium.launch(headless=headless, args=["--no-sandbox", "--disable-setuid-sandbox"])
        context = browser.new_context(user_agent=USER_AGENT, viewport=VIEWPORT)
        try:
            page = context.new_page()
            page.set_default_timeout(30000)
            submit_login(page, credentials, base_url)
            verify_session(page, base_url)
            state = export_session(context, base_url)
        except PWError as e:
            raise AuthError(f"login failed: {e}") from e
        finally:
            context.close()
            browser.close()
    logger.info("Login verified, exported %d cookies", len(state.cookies))
    return state
