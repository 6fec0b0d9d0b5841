"""
Apprise notification functions for the OEV seeker.
"""

import time

from apprise import Apprise

from .codec import format_ether
from .config_loader import SeekerConfig
from .logging_config import setup_logger
from .models import ActiveBid, LiquidationParameters

logger = setup_logger()


def setup_apprise_notification_object(config: SeekerConfig) -> Apprise:
    """Set up the Apprise notification engine."""
    apprise = Apprise()
    apprise.add(config.notification_url)
    return apprise


def _notify(config: SeekerConfig, title: str, body: str) -> bool:
    logger.info("%s notification:\n%s", title, body)
    if not config.notification_url:
        return False
    try:
        apprise = setup_apprise_notification_object(config)
        return apprise.notify(body=body, title=title)
    except Exception as ex:
        logger.error("Failed to send %s notification: %s", title, ex, exc_info=True)
        return False


def _footer(config: SeekerConfig) -> str:
    return (
        f"Time: {time.strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"Network: `{config.target_chain.name}`"
    )


def post_bid_placed_notification(bid: ActiveBid, tx_hash: str, config: SeekerConfig) -> bool:
    """Post a notification about a bid placed on the auction network."""
    params = bid.liquidation_parameters
    message = (
        ":moneybag: *OEV Bid Placed* :moneybag:\n\n"
        f"*Bid ID*: `0x{bid.bid_id.hex()}`\n"
        f"*Borrower*: `{params.borrower}`\n"
        f"• Bid Amount: {format_ether(bid.bid_amount)} ETH\n"
        f"• Expected Profit: {format_ether(params.profit_eth)} ETH (${format_ether(params.profit_usd)})\n"
        f"• Max Repay: {format_ether(params.max_borrow_repay)} ETH\n"
        f"• Transaction: `{tx_hash}`\n"
        f"{_footer(config)}"
    )
    return _notify(config, "OEV Bid Placed", message)


def post_liquidation_result_notification(
    bid_id: bytes, params: LiquidationParameters, profit_eth: int, profit_usd: int, tx_hash: str, config: SeekerConfig
) -> bool:
    """Post a notification about a liquidation executed after an award."""
    message = (
        ":rotating_light: *OEV Liquidation Executed* :rotating_light:\n\n"
        f"*Bid ID*: `0x{bid_id.hex()}`\n"
        f"*Borrower*: `{params.borrower}`\n"
        f"• Collateral: `{params.collateral_token_address}`\n"
        f"• Profit: {format_ether(profit_eth)} ETH (${format_ether(profit_usd)})\n"
        f"• Transaction: `{tx_hash}`\n"
        f"{_footer(config)}"
    )
    return _notify(config, "OEV Liquidation Executed", message)


def post_fulfillment_reported_notification(bid_id: bytes, tx_hash: str, config: SeekerConfig) -> bool:
    message = (
        "*OEV Fulfillment Reported*\n\n"
        f"*Bid ID*: `0x{bid_id.hex()}`\n"
        f"• Transaction: `{tx_hash}`\n"
        f"{_footer(config)}"
    )
    return _notify(config, "OEV Fulfillment Reported", message)


def post_error_notification(message: str, config: SeekerConfig) -> bool:
    """Post an error notification."""
    error_message = f":rotating_light: *Error Notification* :rotating_light:\n\n{message}\n\n{_footer(config)}"
    return _notify(config, "Error Notification", error_message)
