"""SMS reply texts.

Replies are plain text and start with a short marker so they are easy to scan
on a phone: ``$$`` balance, ``>>`` address, ``#`` info, ``<<`` send,
``~~`` prompt, ``??`` help and ``!!!`` for every failure.
"""

from typing import Optional

from pigeon.models.results import (
    BalanceResult,
    ExportSecretResult,
    FundResult,
    OnboardResult,
    SendResult,
    TransactionsResult
)

SECURITY_WARNING = (
    "## SECURITY WARNING: Your previous message contained your password in plain text. "
    "Please DELETE it from your message history immediately for your safety."
)

CLASSIFIER_NOT_CONFIGURED = "!!! Server error: AI classifier not configured"
SESSION_EXPIRED = "!!! Session expired. Please start your command again."
EMPTY_PASSWORD = "!!! Empty password received. Please start your command again."
SEND_FORMAT = "Format: send [amount] ALGO|SOL to [address/phone]"

HELP_MESSAGE = (
    "?? Could not understand your request. Try:\n"
    "- \"balance\" or \"sol balance\" - check your balance\n"
    "- \"address\" - get your wallet address\n"
    "- \"create wallet\" or \"create solana wallet\" - create a new wallet\n"
    "- \"send [amount] ALGO|SOL to [address/phone]\" - send funds\n"
    "- \"fund me\" - get free testnet tokens\n"
    "- \"get pvt key\" - export your private key\n"
    "- \"get txn\" - your last transactions"
)


def failure_reply(action: str, error: Optional[str]) -> str:
    return f"!!! {action} failed: {error or 'Unknown error'}"


def processing_failed(error: Exception) -> str:
    return f"!!! Processing failed: {error}"


def missing_recipient() -> str:
    return f"!!! Recipient is required.\n{SEND_FORMAT}"


def invalid_amount(amount: Optional[str]) -> str:
    return f"!!! Invalid amount \"{amount or ''}\".\n{SEND_FORMAT}"


def unsupported_asset(asset: str) -> str:
    return f"!!! Unsupported asset {asset}. Supported assets: ALGO, SOL"


def send_prompt(amount: str, asset: str, recipient: str) -> str:
    return f"<< Send {amount} {asset} to {recipient}\n\n~~ Reply with your password to confirm:"


def onboard_prompt(chain_label: str) -> str:
    return (
        f"Let's create your {chain_label} wallet!\n\n"
        "~~ Choose a password and reply with it.\n"
        "Remember it: it cannot be recovered!"
    )


def export_prompt() -> str:
    return "*** To export your private key, reply with your password:"


def balance_reply(result: BalanceResult) -> str:
    if not result.success:
        return failure_reply("Balance check", result.error)
    return f"$$ Balance: {result.balance} {result.asset}"


def address_reply(result) -> str:
    if not result.success:
        return failure_reply("Address lookup", result.error)
    return f">> Your address:\n{result.address}"


def transactions_reply(result: TransactionsResult) -> str:
    if not result.success:
        return failure_reply("Transaction history", result.error)
    if not result.transactions:
        return "# No transactions found for your account."

    lines = []
    for index, tx in enumerate(result.transactions, start=1):
        direction = "<Sent" if tx.sender == result.address else ">Received"
        amount = f"{tx.amount} {result.asset}" if tx.amount is not None else tx.type
        date = tx.timestamp[:10] if tx.timestamp else "unknown date"
        lines.append(f"{index}. {direction} {amount} ({date})\n   {tx.explorer_url}")
    return f"# Last {len(result.transactions)} transactions:\n\n" + "\n\n".join(lines)


def fund_reply(result: FundResult) -> str:
    if not result.success:
        return failure_reply("Fund", result.error)
    reply = f"# Funded {result.amount} {result.asset} to your wallet!\nTx ID: {result.transaction_id}"
    if result.confirmed_round is not None:
        reply += f"\nConfirmed in round: {result.confirmed_round}"
    return reply + f"\n# Explorer: {result.explorer_url}"


def send_reply(result: SendResult, recipient: str) -> str:
    if not result.success:
        return failure_reply("Send", result.error)
    reply = f"<< Sent {result.amount} {result.asset} to {recipient}\nTx ID: {result.transaction_id}"
    if result.confirmed_round is not None:
        reply += f"\nConfirmed in round: {result.confirmed_round}"
    return reply + f"\n# Explorer: {result.explorer_url}"


def onboard_reply(result: OnboardResult, chain_label: str) -> str:
    if result.already_onboarded:
        return f"# You are already onboarded!\nAddress: {result.address or 'N/A'}"
    if not result.success:
        return failure_reply("Onboard", result.error)
    return f"Welcome! Your {chain_label} wallet has been created.\nAddress: {result.address or 'N/A'}"


def export_reply(result: ExportSecretResult) -> str:
    if not result.success:
        return failure_reply("Key export", result.error)
    return (
        f"# Your private key:\n\n{result.secret}\n\n"
        "!!!! NEVER share this with anyone! Delete this message immediately after saving it securely."
    )
