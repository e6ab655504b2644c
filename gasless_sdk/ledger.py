"""
Ledger collaborator: building, signing and submitting transfers.

The reconciliation engine never talks to the ledger itself; the payment
client delegates the funds-moving steps to a `LedgerClient`. `Web3Ledger`
implements it over an EVM JSON-RPC endpoint such as the Hedera JSON-RPC
relay, where HBAR is the native currency, fungible tokens are ERC-20
contracts and NFTs are ERC-721 contracts at their long-zero addresses.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from .exceptions import LedgerUnavailableError, TransactionRejectedError
from .models import PaymentType

logger = logging.getLogger(__name__)

WEIBARS_PER_HBAR = 10 ** 18


@dataclass(frozen=True)
class TransferIntent:
    """What a payment request asks the ledger to move."""
    sender: str
    recipient: str
    payment_type: PaymentType
    amount: float
    token_id: Optional[str] = None
    nft_serial_number: Optional[int] = None
    max_fee: float = 0.05
    memo: Optional[str] = None


@dataclass(frozen=True)
class LedgerReceipt:
    """
    Outcome of a submitted transfer.

    Attributes:
        transaction_ref: Ledger transaction reference (hash or transaction id)
        network_fee_paid: Network fee paid for execution, in HBAR
        success: Whether the ledger executed the transfer
        error: Error description when not successful
    """
    transaction_ref: str
    network_fee_paid: float = 0.0
    success: bool = True
    error: str = ""


class LedgerClient(ABC):
    """
    Abstract base class for ledger implementations.
    """

    @abstractmethod
    def build_transfer(self, intent: TransferIntent) -> bytes:
        """
        Build the unsigned transfer for an intent.

        Returns:
            Signable transaction bytes
        """
        pass

    @abstractmethod
    def sign(self, payload: bytes, private_key: str) -> bytes:
        """
        Sign transaction bytes without executing them.

        Returns:
            Signed transaction bytes
        """
        pass

    @abstractmethod
    def submit(self, signed: bytes) -> LedgerReceipt:
        """
        Execute signed transaction bytes.

        Raises:
            LedgerUnavailableError: If the ledger cannot be reached
            TransactionRejectedError: If the ledger rejects or reverts the transfer
        """
        pass

    @abstractmethod
    def get_balance(self, account: str) -> float:
        """Balance of an account in HBAR."""
        pass


def account_id_to_evm_address(account_id: str) -> str:
    """
    Convert a Hedera entity id ("shard.realm.num") to its long-zero EVM address.

    EVM addresses ("0x...") are returned checksummed and otherwise unchanged.

    Raises:
        ValueError: If the id is neither form
    """
    if account_id.startswith("0x"):
        return Web3.to_checksum_address(account_id)
    try:
        shard, realm, num = (int(part) for part in account_id.split("."))
    except ValueError:
        raise ValueError(f"Invalid Hedera entity id: {account_id}")
    raw = shard.to_bytes(4, "big") + realm.to_bytes(8, "big") + num.to_bytes(8, "big")
    return Web3.to_checksum_address("0x" + raw.hex())


class Web3Ledger(LedgerClient):
    """
    Ledger implementation over an EVM JSON-RPC endpoint.

    Unsigned transfers are canonical JSON transaction dictionaries; signed
    transfers are raw signed transactions.
    """

    ERC20_ABI = [
        {
            "inputs": [
                {"internalType": "address", "name": "to", "type": "address"},
                {"internalType": "uint256", "name": "amount", "type": "uint256"}
            ],
            "name": "transfer",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [],
            "name": "decimals",
            "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
            "stateMutability": "view",
            "type": "function"
        }
    ]

    ERC721_ABI = [
        {
            "inputs": [
                {"internalType": "address", "name": "from", "type": "address"},
                {"internalType": "address", "name": "to", "type": "address"},
                {"internalType": "uint256", "name": "tokenId", "type": "uint256"}
            ],
            "name": "safeTransferFrom",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        }
    ]

    DEFAULT_GAS = 300000

    def __init__(
        self,
        rpc_url: str,
        chain_id: Optional[int] = None,
        receipt_timeout: int = 120,
        poll_interval: float = 0.1,
        w3: Optional[Web3] = None
    ):
        """
        Initialize the ledger

        Args:
            rpc_url: JSON-RPC endpoint URL (e.g. "https://testnet.hashio.io/api")
            chain_id: Chain id; fetched from the node when omitted
            receipt_timeout: Seconds to wait for a receipt after submission
            poll_interval: Receipt polling interval in seconds
            w3: Optional preconfigured Web3 instance
        """
        self.rpc_url = rpc_url
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self._chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self._token_decimals: Dict[str, int] = {}

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(self.w3.eth.chain_id)
        return self._chain_id

    def _decimals(self, token_address: str) -> int:
        if token_address not in self._token_decimals:
            token = self.w3.eth.contract(address=token_address, abi=self.ERC20_ABI)
            self._token_decimals[token_address] = int(token.functions.decimals().call())
        return self._token_decimals[token_address]

    def build_transfer(self, intent: TransferIntent) -> bytes:
        sender = account_id_to_evm_address(intent.sender)
        recipient = account_id_to_evm_address(intent.recipient)

        try:
            gas_price = int(self.w3.eth.gas_price)
            nonce = int(self.w3.eth.get_transaction_count(sender))
            params: Dict[str, Any] = {
                "from": sender,
                "nonce": nonce,
                "gas": self.DEFAULT_GAS,
                "gasPrice": gas_price,
                "chainId": self.chain_id,
            }

            if intent.payment_type == PaymentType.HBAR:
                tx = dict(params, to=recipient, value=int(round(intent.amount * WEIBARS_PER_HBAR)), data="0x")
            elif intent.payment_type == PaymentType.TOKEN:
                token_address = account_id_to_evm_address(intent.token_id)
                token = self.w3.eth.contract(address=token_address, abi=self.ERC20_ABI)
                units = int(round(intent.amount * 10 ** self._decimals(token_address)))
                tx = token.functions.transfer(recipient, units).build_transaction(dict(params, value=0))
            elif intent.payment_type == PaymentType.NFT:
                token_address = account_id_to_evm_address(intent.token_id)
                nft = self.w3.eth.contract(address=token_address, abi=self.ERC721_ABI)
                tx = nft.functions.safeTransferFrom(
                    sender, recipient, int(intent.nft_serial_number)
                ).build_transaction(dict(params, value=0))
            else:
                raise ValueError(f"Unsupported payment type: {intent.payment_type}")
        except requests.RequestException as e:
            raise LedgerUnavailableError(f"Ledger unavailable while building transfer: {e}")

        # Cap the gas so that the network fee stays within max_fee
        max_fee_weibars = int(intent.max_fee * WEIBARS_PER_HBAR)
        if gas_price > 0 and tx["gas"] * gas_price > max_fee_weibars:
            tx["gas"] = max(21000, max_fee_weibars // gas_price)

        tx.pop("from", None)
        logger.debug(f"Built {intent.payment_type.value} transfer from {sender} to {recipient}")
        return json.dumps(tx, separators=(",", ":"), sort_keys=True).encode("utf-8")

    def sign(self, payload: bytes, private_key: str) -> bytes:
        try:
            tx = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ValueError(f"Transfer payload is not a JSON transaction: {e}")
        signed = Account.from_key(private_key).sign_transaction(tx)
        return bytes(signed.raw_transaction)

    def submit(self, signed: bytes) -> LedgerReceipt:
        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed)
            logger.info(f"Transaction sent: {tx_hash.hex()}")
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.receipt_timeout,
                poll_latency=self.poll_interval
            )
        except TimeExhausted as e:
            # Outcome unknown: the transaction may still execute
            raise LedgerUnavailableError(f"Timed out waiting for receipt: {e}", retryable=False)
        except requests.RequestException as e:
            raise LedgerUnavailableError(f"Ledger unavailable: {e}")
        except (Web3Exception, ValueError) as e:
            logger.error(f"Ledger rejected transaction: {e}")
            raise TransactionRejectedError(f"Transaction rejected: {e}")

        ref = receipt["transactionHash"]
        ref = ref.hex() if isinstance(ref, bytes) else str(ref)
        if not ref.startswith("0x"):
            ref = "0x" + ref
        gas_price = receipt.get("effectiveGasPrice") or 0
        fee = int(receipt.get("gasUsed", 0)) * int(gas_price) / WEIBARS_PER_HBAR

        if receipt.get("status") != 1:
            raise TransactionRejectedError(f"Transaction {ref} reverted")
        return LedgerReceipt(transaction_ref=ref, network_fee_paid=fee)

    def get_balance(self, account: str) -> float:
        try:
            return int(self.w3.eth.get_balance(account_id_to_evm_address(account))) / WEIBARS_PER_HBAR
        except requests.RequestException as e:
            raise LedgerUnavailableError(f"Ledger unavailable while reading balance: {e}")
