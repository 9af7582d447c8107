# auctionwatch/errors.py
"""Exception taxonomy for scrape runs and bid tracking."""


class AuctionWatchError(Exception):
    pass


class AuthError(AuctionWatchError):
    """Session could not be established or failed the verification probe."""


class NavigationError(AuctionWatchError):
    def __init__(self, auction_id, message):
        super().__init__(f"{auction_id}: {message}")
        self.auction_id = auction_id


class ParseError(AuctionWatchError):
    def __init__(self, auction_id, message):
        super().__init__(f"{auction_id}: {message}")
        self.auction_id = auction_id


class WorkerCrashError(AuctionWatchError):
    """A worker process exited abnormally; the whole scrape run fails."""

    def __init__(self, worker_id, start_id, end_id, exitcode, phase="scrape"):
        super().__init__(
            f"worker {worker_id} ({start_id}-{end_id}) exited with code {exitcode} during {phase}"
        )
        self.worker_id = worker_id
        self.start_id = start_id
        self.end_id = end_id
        self.exitcode = exitcode
        self.phase = phase


class PersistenceError(AuctionWatchError):
    """Bid history could not be written; in-memory history stays ahead of disk."""
