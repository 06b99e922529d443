# fees.py
import math

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from config import MINIMUM_FEE_LAMPORTS, PLATFORM_FEE_RATE
from errors import InvalidArgument


def hybrid_fee(amount: int, rate: float = PLATFORM_FEE_RATE, floor: int = MINIMUM_FEE_LAMPORTS) -> int:
    """
    Calculates the platform fee: a percentage of the amount or a minimum fixed amount.

    Args:
        amount (int): The swap notional in lamports (1 SOL = 1,000,000,000 lamports).
        rate (float): The fee percentage, 0.005 for 0.5%.
        floor (int): The minimum fee in lamports.

    Returns:
        int: The fee amount in lamports.

    Raises:
        InvalidArgument: If amount is not positive, or rate/floor are negative.
    """
    if math.isnan(amount) or amount <= 0:
        raise InvalidArgument("Invalid swap amount: must be a positive number.")
    if math.isnan(rate) or rate < 0:
        raise InvalidArgument("Invalid percentage fee: must be a non-negative number.")
    if math.isnan(floor) or floor < 0:
        raise InvalidArgument("Invalid minimum fee: must be a non-negative number.")

    percentage_fee = math.floor(amount * rate)
    return max(percentage_fee, int(floor))


def create_fee_transfer_instruction(payer: Pubkey, fee_lamports: int, fee_recipient: Pubkey) -> Instruction:
    """System Program transfer of the platform fee from the payer to the fee wallet."""
    return transfer(TransferParams(from_pubkey=payer, to_pubkey=fee_recipient, lamports=fee_lamports))
