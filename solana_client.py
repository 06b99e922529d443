# solana_client.py
import asyncio
import logging
from typing import List, Optional, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solana.exceptions import SolanaRpcException
from solders.address_lookup_table_account import AddressLookupTable, AddressLookupTableAccount
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from spl.token._layouts import MINT_LAYOUT

from config import CONFIRMATION_TIMEOUT_SECONDS, DEFAULT_TOKEN_DECIMALS, SOLANA_RPC_URL, SUBMIT_MAX_RETRIES
from errors import ConfirmationTimeout, SubmissionFailed


async def get_token_decimals(client: AsyncClient, mint_address: str) -> int:
    """
    Retrieves the number of decimals for a given Solana token mint.

    Args:
        client (AsyncClient): The asynchronous Solana client.
        mint_address (str): The public key address of the token mint.

    Returns:
        int: The number of decimals for the token.

    Raises:
        ValueError: If the mint address is invalid or account info cannot be retrieved.
    """
    try:
        # Convert string mint address to PublicKey
        token_mint_address = Pubkey.from_string(mint_address)

        # Get the account information for the token mint
        account_info = await client.get_account_info(token_mint_address)

        # Parse the account data to extract decimals
        if account_info.value and account_info.value.data:
            mint_data = MINT_LAYOUT.parse(account_info.value.data)
            return mint_data.decimals
        else:
            raise ValueError(f"Could not retrieve account information for {mint_address}")

    except (ValueError, SolanaRpcException) as e:
        raise ValueError(f"Invalid mint address or failed to fetch data: {str(e)}")


class SolanaLedgerClient:
    """Thin wrapper over the RPC for everything the swap pipeline needs from the chain."""

    def __init__(self, rpc_url: str = SOLANA_RPC_URL, client: Optional[AsyncClient] = None,
                 max_retries: int = SUBMIT_MAX_RETRIES, confirmation_timeout: float = CONFIRMATION_TIMEOUT_SECONDS):
        self.solana_client = client or AsyncClient(rpc_url, commitment=Confirmed)
        self.max_retries = max_retries
        self.confirmation_timeout = confirmation_timeout

    async def get_balance(self, pubkey: Pubkey) -> int:
        """Lamport balance of a wallet."""
        response = await self.solana_client.get_balance(pubkey, commitment=Confirmed)
        return response.value

    async def get_token_decimals(self, mint_address: str) -> int:
        try:
            return await get_token_decimals(self.solana_client, mint_address)
        except ValueError as e:
            logging.error(f"Error fetching token decimals for {mint_address}, falling back to {DEFAULT_TOKEN_DECIMALS}: {e}")
            return DEFAULT_TOKEN_DECIMALS

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        response = await self.solana_client.get_latest_blockhash(commitment=Confirmed)
        return response.value.blockhash, response.value.last_valid_block_height

    async def get_address_lookup_tables(self, addresses: List[str]) -> List[AddressLookupTableAccount]:
        if not addresses:
            return []
        keys = [Pubkey.from_string(address) for address in addresses]
        response = await self.solana_client.get_multiple_accounts(keys)
        tables = []
        for key, account in zip(keys, response.value):
            if account is None:
                logging.warning(f"Address lookup table {key} not found, skipping.")
                continue
            table = AddressLookupTable.deserialize(bytes(account.data))
            tables.append(AddressLookupTableAccount(key=key, addresses=list(table.addresses)))
        return tables

    async def submit(self, transaction: VersionedTransaction) -> Signature:
        """
        Sends a signed transaction. Rebroadcasting is left to the RPC node
        through ``max_retries``.

        Raises:
            SubmissionFailed: The node rejected the transaction, nothing landed.
            ConfirmationTimeout: The send itself failed in transport, so the
                transaction may already be broadcast under its signature.
        """
        opts = TxOpts(skip_preflight=True, preflight_commitment=Confirmed, max_retries=self.max_retries)
        try:
            response = await self.solana_client.send_raw_transaction(bytes(transaction), opts=opts)
        except RPCException as e:
            raise SubmissionFailed(f"Transaction rejected: {e}") from e
        except SolanaRpcException as e:
            signature = str(transaction.signatures[0])
            raise ConfirmationTimeout(signature, f"Lost contact with RPC while sending {signature}: {e}") from e
        return response.value

    async def confirm(self, signature: Signature, last_valid_block_height: Optional[int] = None):
        """
        Waits for the transaction to reach the confirmed commitment.

        Raises:
            ConfirmationTimeout: No confirmation inside the wait window.
            SubmissionFailed: The transaction landed with an error.
        """
        try:
            response = await asyncio.wait_for(
                self.solana_client.confirm_transaction(
                    signature, commitment=Confirmed, last_valid_block_height=last_valid_block_height,
                ),
                timeout=self.confirmation_timeout,
            )
        except (asyncio.TimeoutError, UnconfirmedTxError, TransactionExpiredBlockheightExceededError) as e:
            raise ConfirmationTimeout(str(signature), f"Transaction {signature} was not confirmed: {e}") from e
        except SolanaRpcException as e:
            raise ConfirmationTimeout(str(signature), f"Lost contact with RPC while confirming {signature}: {e}") from e

        statuses = response.value
        if statuses and statuses[0] is not None and statuses[0].err:
            raise SubmissionFailed(f"Transaction {signature} failed: {statuses[0].err}")
        logging.info(f"Transaction confirmed: {signature}")

    async def close(self):
        await self.solana_client.close()
