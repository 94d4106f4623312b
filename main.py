import argparse
import asyncio
import logging
import os
import sys
import time

from tabulate import tabulate

from config import Config
from protocols.codec import format_hash, format_xlm
from protocols.errors import LumiLendError, ValidationError, WalletUnavailable
from utils.calculations import calculate_lender_share, preview_loan
from utils.stellar_utils import init_payments, init_pool, init_queries, init_rpc, init_wallet
from utils.validation import validate_deposit, validate_loan_request

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("MainScript")

class PoolDataManager:
    def __init__(self, queries, wallet):
        self.queries = queries
        self.wallet = wallet
        self.address = None
        self.pool_stats = None
        self.lender_info = None
        self.balance = None
        self.active_loan = None
        self.last_update = None

    async def connect_wallet(self):
        """Resolve the wallet address; the dashboard still works without one"""
        try:
            self.address = await self.wallet.get_address()
        except WalletUnavailable:
            self.address = None

    async def refresh(self):
        """Refresh all data in parallel"""
        if self.address:
            self.pool_stats, self.balance, self.lender_info, self.active_loan = await asyncio.gather(
                self.queries.fetch_pool_stats(),
                self.queries.fetch_xlm_balance(self.address),
                self.queries.fetch_lender_info(self.address),
                self.queries.fetch_active_loan(self.address),
            )
        else:
            self.pool_stats = await self.queries.fetch_pool_stats()
        self.last_update = time.time()

class DisplayManager:
    def clear_screen(self):
        """Clear the terminal screen"""
        os.system('cls' if os.name == 'nt' else 'clear')

    def display_all(self, data_manager):
        print(f"\n=== Last Update: {time.strftime('%Y-%m-%d %H:%M:%S')} ===\n")
        self.print_wallet(data_manager)
        self.print_pool_stats(data_manager.pool_stats)
        self.print_lender_position(data_manager.lender_info, data_manager.pool_stats)
        self.print_active_loan(data_manager.active_loan)

    @staticmethod
    def print_wallet(data_manager):
        if not data_manager.address:
            print("No wallet connected (set WALLET_PVT_KEY)")
            return
        balance = data_manager.balance
        print(f"Wallet: {format_hash(data_manager.address)}  "
              f"Balance: {format_xlm(balance) + ' XLM' if balance is not None else 'unavailable'}")

    @staticmethod
    def print_pool_stats(stats):
        print("\n=== Pool ===")
        if not stats:
            print("No pool data available")
            return
        print(tabulate(
            [[
                format_xlm(stats.total_deposited),
                format_xlm(stats.total_lent),
                format_xlm(stats.available),
                f"{stats.utilization * 100:.2f}%",
                f"{stats.interest_rate_bps / 100:.2f}%"
            ]],
            headers=['Total Deposited', 'Total Lent', 'Available', 'Utilization', 'Interest'],
            tablefmt='grid',
            colalign=('right', 'right', 'right', 'right', 'right'),
            disable_numparse=True
        ))

    @staticmethod
    def print_lender_position(info, stats):
        print("\n=== My Deposits ===")
        if not info or info.amount == 0:
            print("No deposits")
            return
        share = calculate_lender_share(info.amount, stats.total_deposited) if stats else 0
        deposited_at = time.strftime('%Y-%m-%d %H:%M', time.localtime(info.deposit_timestamp))
        print(tabulate(
            [[format_xlm(info.amount), f"{share * 100:.2f}%", deposited_at]],
            headers=['Deposited', 'Pool Share', 'Last Deposit'],
            tablefmt='grid',
            colalign=('right', 'right', 'left'),
            disable_numparse=True
        ))

    @staticmethod
    def print_active_loan(loan):
        print("\n=== My Loan ===")
        if not loan:
            print("You don't currently have any active loans.")
            return
        now = time.time()
        due = time.strftime('%Y-%m-%d', time.localtime(loan.due_timestamp))
        print(tabulate(
            [[
                loan.loan_id,
                format_xlm(loan.principal),
                format_xlm(loan.interest_owed),
                format_xlm(loan.total_due),
                due,
                loan.days_remaining(now),
                loan.status.value
            ]],
            headers=['Loan', 'Principal', 'Interest', 'Total Due', 'Due', 'Days Left', 'Status'],
            tablefmt='grid',
            disable_numparse=True
        ))
        if loan.is_overdue(now):
            print(f"\n⚠️ WARNING: loan {loan.loan_id} is overdue and may be liquidated!")

def print_result(action, result):
    print(f"\n✅ {action} confirmed")
    print(f"Transaction: {Config.EXPLORER_URL}/tx/{result.hash}")

async def run_dashboard(data_manager, display_manager, watch: bool):
    await data_manager.connect_wallet()
    while True:
        await data_manager.refresh()
        if watch:
            display_manager.clear_screen()
        display_manager.display_all(data_manager)
        if not watch:
            return
        await asyncio.sleep(Config.ADDRESS_TTL)

async def run_command(args):
    wallet = init_wallet()
    rpc = init_rpc()
    try:
        pool = init_pool(rpc, wallet)
        queries = init_queries(pool)
        if args.command == 'dashboard':
            await run_dashboard(PoolDataManager(queries, wallet), DisplayManager(), args.watch)
        elif args.command == 'deposit':
            balance = await queries.fetch_xlm_balance(await wallet.get_address())
            if balance is not None:
                validate_deposit(args.amount, balance)
            print_result("Deposit", await pool.deposit(args.amount))
        elif args.command == 'withdraw':
            print_result("Withdrawal", await pool.withdraw(args.amount))
        elif args.command == 'borrow':
            stats = await queries.fetch_pool_stats()
            if stats:
                validate_loan_request(args.amount, args.days, stats.available)
                preview = preview_loan(args.amount, stats.interest_rate_bps, args.days, int(time.time()))
                print(f"Interest: {format_xlm(preview['interest_owed'])} XLM, "
                      f"total due: {format_xlm(preview['total_due'])} XLM")
            result = await pool.request_loan(args.amount, args.days)
            print_result(f"Loan {result.return_value}", result)
        elif args.command == 'repay':
            print_result("Repayment", await pool.repay_loan(args.loan_id))
        elif args.command == 'liquidate':
            print_result("Liquidation", await pool.liquidate_defaulted(args.loan_id))
        elif args.command == 'send':
            address = await wallet.get_address()
            balance = await queries.fetch_xlm_balance(address)
            payments = init_payments(rpc, wallet)
            print_result("Payment", await payments.send_payment(args.destination, args.amount, args.memo, balance))
        elif args.command == 'resume':
            result = await pool.resume_pending()
            if result is None:
                print("No pending transaction")
            else:
                print_result("Pending transaction", result)
    finally:
        await rpc.close()

def build_parser():
    parser = argparse.ArgumentParser(description="LumiLend pool client")
    sub = parser.add_subparsers(dest='command', required=True)

    dashboard = sub.add_parser('dashboard', help="Show pool and account data")
    dashboard.add_argument('--watch', action='store_true', help="Keep refreshing")

    for name, help_text in (('deposit', "Deposit XLM into the pool"), ('withdraw', "Withdraw deposited XLM")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument('amount')

    borrow = sub.add_parser('borrow', help="Request a loan")
    borrow.add_argument('amount')
    borrow.add_argument('days', type=int)

    repay = sub.add_parser('repay', help="Repay your active loan")
    repay.add_argument('loan_id', type=int, nargs='?')

    liquidate = sub.add_parser('liquidate', help="Mark an overdue loan as defaulted")
    liquidate.add_argument('loan_id', type=int)

    send = sub.add_parser('send', help="Send XLM to another account")
    send.add_argument('destination')
    send.add_argument('amount')
    send.add_argument('--memo')

    sub.add_parser('resume', help="Finish polling a transaction submitted before a restart")
    return parser

def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(run_command(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
    except ValidationError as e:
        print(f"❌ {e}")
        sys.exit(2)
    except LumiLendError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
