"""
work_ledger/cli.py

Admin CLI for the work ledger: record tasks, inspect stats and proofs,
mine reward blocks and check balances.
"""

import json
import sys
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .config import ConfigLoadError, LedgerConfig, configure_logging, load_config
from .mining import Miner
from .records import TaskResult, TaskStatus, TaskType, WorkRecord
from .storage import ensure_directory
from .tracker import WorkTracker
from .valuation import verify_proof
from .wallet import Wallet

# option name -> TaskResult field
RESULT_OPTIONS = {
    "--tokens-in": "tokens_input",
    "--tokens-out": "tokens_output",
    "--code-lines": "code_lines",
    "--code-files": "code_files",
    "--words": "words_written",
    "--bugs": "bugs_fixed",
    "--api-calls": "api_calls",
    "--errors-fixed": "errors_fixed",
}


def format_ms(ts: int) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts / 1000).strftime("%Y-%m-%d %H:%M:%S")


def format_seconds(ts: int) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def parse_options(args: List[str], flags: Tuple[str, ...] = ()) -> Tuple[List[str], Dict[str, Any]]:
    """Split ``args`` into positionals and ``--name value`` options."""
    positionals: List[str] = []
    options: Dict[str, Any] = {}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in flags:
            options[arg] = True
            i += 1
        elif arg.startswith("--") and i + 1 < len(args):
            options[arg] = args[i + 1]
            i += 2
        else:
            positionals.append(arg)
            i += 1
    return positionals, options


class WorkLedgerCLI:
    """CLI interface over a tracker, a wallet and a miner sharing one data dir."""

    def __init__(self, config: LedgerConfig):
        self.config = config
        self._tracker: Optional[WorkTracker] = None
        self._wallet: Optional[Wallet] = None
        self._miner: Optional[Miner] = None

    @property
    def wallet(self) -> Optional[Wallet]:
        if self._wallet is None:
            path = self.config.wallets_dir / f"{self.config.wallet_name}.json"
            if path.exists():
                self._wallet = Wallet.load(self.config.wallets_dir, self.config.wallet_name)
        return self._wallet

    @property
    def tracker(self) -> WorkTracker:
        if self._tracker is None:
            self._tracker = WorkTracker(
                self.config.data_dir,
                value_model=self.config.value_model,
                signer=self.wallet,
            )
        return self._tracker

    @property
    def miner(self) -> Miner:
        if self._miner is None:
            wallet = self.wallet
            if wallet is None:
                raise SystemExit("No wallet found. Create one first: wallet create")
            self._miner = Miner(
                wallet,
                self.config.data_dir,
                difficulty=self.config.difficulty,
                reward=self.config.reward,
                policy=self.config.seal,
                interval=self.config.mine_interval,
            )
        return self._miner

    # === Setup ===

    def init(self) -> None:
        for path in (self.config.data_dir, self.config.records_dir, self.config.wallets_dir):
            ensure_directory(path)
        print(f"Initialized data directory {self.config.data_dir}")

    def wallet_create(self, name: Optional[str] = None) -> None:
        name = name or self.config.wallet_name
        if (self.config.wallets_dir / f"{name}.json").exists():
            print(f"Wallet '{name}' already exists.")
            return
        wallet = Wallet.create(name)
        path = wallet.save(self.config.wallets_dir)
        print(f"Wallet created: {wallet.name}")
        print(f"  Address: {wallet.address}")
        print(f"  Stored:  {path}")

    def wallet_show(self, name: Optional[str] = None) -> None:
        name = name or self.config.wallet_name
        try:
            wallet = Wallet.load(self.config.wallets_dir, name)
        except FileNotFoundError:
            print(f"Wallet not found: {name}")
            return
        print(f"{wallet.name}: {wallet.address}")

    # === Tasks ===

    def record(self, task_type: str, description: str, result: TaskResult, agent_id: Optional[str] = None) -> None:
        record = self.tracker.start_task(agent_id or self.config.agent_id, description, task_type)
        record = self.tracker.complete_task(record, result)
        print(f"Recorded {record.id}  value={record.value:.4f}")
        print(f"  Proof: {record.proof_hash}")

    def fail(self, task_type: str, description: str, message: str, agent_id: Optional[str] = None) -> None:
        record = self.tracker.start_task(agent_id or self.config.agent_id, description, task_type)
        record = self.tracker.fail_task(record, message)
        print(f"Recorded failure {record.id}")

    def stats(self) -> None:
        stats = self.tracker.get_stats()

        print("\n" + "=" * 60)
        print("WORK LEDGER STATISTICS")
        print("=" * 60)
        print(f"\n   Total Tasks:     {stats.total_tasks}")
        print(f"   Completed:       {stats.completed_tasks}")
        print(f"   Failed:          {stats.failed_tasks}")
        print(f"   Tokens:          {stats.total_tokens}")
        print(f"   Code Lines:      {stats.total_code_lines}")
        print(f"   Words:           {stats.total_words}")
        print(f"   Bugs Fixed:      {stats.bugs_fixed}")
        print(f"   Total Value:     {stats.total_value:.4f}")

        if stats.by_task_type:
            print("\n   BY TASK TYPE")
            for task_type, count in sorted(stats.by_task_type.items()):
                print(f"   {task_type:<12} {count}")
        print("\n" + "=" * 60)

    def records(self, limit: int = 20) -> None:
        records = self.tracker.get_records(limit)
        if not records:
            print("No records found.")
            return

        print(f"\n{'ID':<18} {'Completed':<20} {'Status':<10} {'Type':<10} {'Value':>10}  Description")
        print("-" * 100)
        for r in records:
            print(
                f"{r.id[:16]:<18} {format_ms(r.completed_at):<20} {r.status.value:<10} "
                f"{r.task_type.value:<10} {r.value:>10.4f}  {r.description[:40]}"
            )
        print(f"\nShowing {len(records)} records")

    def _find(self, record_id: str) -> Optional[WorkRecord]:
        record = self.tracker.get_record(record_id)
        if record:
            return record
        matches = [r for r in self.tracker.get_records() if r.id.startswith(record_id)]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            print(f"Multiple records match prefix '{record_id}':")
            for m in matches[:5]:
                print(f"  {m.id}")
        else:
            print(f"Record not found: {record_id}")
        return None

    def show(self, record_id: str) -> None:
        record = self._find(record_id)
        if record is None:
            return

        print(f"\n{'='*60}")
        print(f"RECORD: {record.id}")
        print(f"{'='*60}")
        print(f"   Agent:       {record.agent_id}")
        print(f"   Type:        {record.task_type.value}")
        print(f"   Status:      {record.status.value}")
        print(f"   Description: {record.description}")
        print(f"   Started:     {format_ms(record.started_at)}")
        print(f"   Completed:   {format_ms(record.completed_at)}")

        print("\n   METRICS")
        for name in TaskResult.model_fields:
            print(f"   {name:<15} {getattr(record, name)}")

        if record.status == TaskStatus.COMPLETED:
            parts = self.tracker.value_model.breakdown(record)
            print("\n   VALUE")
            print(f"   base           {parts.base:>10.4f}")
            print(f"   code           {parts.code:>10.4f}")
            print(f"   words          {parts.words:>10.4f}")
            print(f"   api efficiency {parts.api_efficiency:>10.4f}")
            print(f"   token cost     {-parts.token_cost:>10.4f}")
            print(f"   TOTAL          {parts.total:>10.4f}")

        print("\n   PROOF")
        print(f"   Hash:      {record.proof_hash or 'None'}")
        print(f"   Verified:  {verify_proof(record)}")
        print(f"   Signature: {record.signature or 'None'}")
        print()

    def attest(self, limit: int = 100) -> None:
        print(json.dumps(self.tracker.attestation(limit).model_dump(), indent=2))

    def verify(self) -> bool:
        mismatched = self.tracker.verify_records()
        print(f"Records: {len(self.tracker.get_records())} checked, {len(mismatched)} mismatched")
        for record_id in mismatched:
            print(f"  proof mismatch: {record_id}")

        ok = not mismatched
        if self.wallet is not None:
            report = self.miner.verify()
            print(f"Chain:   height={report.height} valid={report.valid} unsealed={report.unsealed}")
            for error in report.errors:
                print(f"  {error}")
            ok = ok and report.valid
        return ok

    # === Mining ===

    def mine(self, blocks: int = 1) -> None:
        for _ in range(blocks):
            block = self.miner.seal_block()
            marker = "" if block.sealed else "  (unsealed)"
            print(f"Block #{block.index}  nonce={block.work_proof}  hash={block.hash[:16]}...{marker}")
        print(f"Balance: {self.miner.balance():.2f}")

    def mine_run(self, interval: Optional[float] = None) -> None:
        miner = self.miner
        if interval:
            miner.interval = interval
        miner.start(seal_now=True)
        print(f"Mining every {miner.interval}s as {miner.address}. Ctrl-C to stop.")
        try:
            while True:
                time.sleep(1.0)
        except KeyboardInterrupt:
            pass
        finally:
            miner.close()
            print(f"\nMining stopped. Balance: {miner.balance():.2f}")

    def balance(self, address: Optional[str] = None) -> None:
        print(f"Balance: {self.miner.balance(address):.2f}")

    def chain(self, limit: int = 10) -> None:
        blocks = self.miner.get_blocks()
        if not blocks:
            print("Chain is empty.")
            return
        print(f"\n{'#':<6} {'Time':<20} {'Nonce':<8} {'Hash':<20} {'Value':>8}")
        print("-" * 66)
        for b in blocks[-limit:]:
            print(f"{b.index:<6} {format_seconds(b.timestamp):<20} {b.work_proof:<8} {b.hash[:18]:<20} {b.value:>8.2f}")
        print(f"\nHeight {len(blocks)}")


def print_usage():
    """Print CLI usage information."""
    print("""
Work Ledger CLI

Usage: python -m work_ledger.cli [--config <path>] [--data-dir <dir>] <command> [options]

Commands:
  init                              Create data directories
  wallet create [name]              Create a signing wallet
  wallet show [name]                Show wallet address

  record <type> <description>       Record a completed task
    --tokens-in N --tokens-out N    Token usage
    --code-lines N --code-files N   Code produced
    --words N --bugs N              Words written, bugs fixed
    --api-calls N --errors-fixed N
    --agent <id>                    Agent id (default from config)
  fail <type> <description> <msg>   Record a failed task

  stats                             Aggregate statistics
  records [--limit N]               Most recent records (default 20)
  show <record_id>                  Record details (prefix match allowed)
  attest [--limit N]                Combined proof of the N latest records
  verify                            Re-check record proofs and the chain

  mine [--blocks N]                 Seal N blocks now (default 1)
  mine run [--interval S]           Seal on a fixed cadence until Ctrl-C
  balance [address]                 Reward balance (default: own wallet)
  chain [--limit N]                 Latest blocks

Task types: """ + ", ".join(t.value for t in TaskType) + """

Environment: WORK_LEDGER_DATA_DIR, WORK_LEDGER_DIFFICULTY, WORK_LEDGER_REWARD,
  WORK_LEDGER_MINE_INTERVAL, WORK_LEDGER_MAX_ATTEMPTS, WORK_LEDGER_ON_EXHAUSTION,
  WORK_LEDGER_AGENT_ID, WORK_LEDGER_WALLET_NAME, WORK_LEDGER_LOG_LEVEL
""")


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = list(sys.argv[1:] if argv is None else argv)

    if not args or args[0] in ["--help", "-h", "help"]:
        print_usage()
        return 0

    overrides: Dict[str, Any] = {}
    config_path = None
    for option, key in (("--config", None), ("--data-dir", "data_dir")):
        if option in args:
            idx = args.index(option)
            if idx + 1 >= len(args):
                print(f"Missing value for {option}")
                return 2
            if key is None:
                config_path = args[idx + 1]
            else:
                overrides[key] = args[idx + 1]
            args = args[:idx] + args[idx + 2:]

    if not args:
        print_usage()
        return 2

    try:
        config = load_config(config_path, overrides=overrides)
    except ConfigLoadError as e:
        print(f"Configuration error: {e}")
        return 2
    configure_logging(config.log_level)

    command, args = args[0], args[1:]
    cli = WorkLedgerCLI(config)

    if command == "init":
        cli.init()

    elif command == "wallet":
        if not args or args[0] not in ("create", "show"):
            print("Usage: wallet create|show [name]")
            return 2
        name = args[1] if len(args) > 1 else None
        if args[0] == "create":
            cli.wallet_create(name)
        else:
            cli.wallet_show(name)

    elif command == "record":
        positionals, options = parse_options(args)
        if len(positionals) < 2:
            print("Usage: record <type> <description> [--tokens-in N] ...")
            return 2
        try:
            result = TaskResult(**{
                field: int(options[option])
                for option, field in RESULT_OPTIONS.items() if option in options
            })
            cli.record(positionals[0], positionals[1], result, agent_id=options.get("--agent"))
        except ValueError as e:
            print(f"Invalid task: {e}")
            return 2

    elif command == "fail":
        positionals, options = parse_options(args)
        if len(positionals) < 3:
            print("Usage: fail <type> <description> <message>")
            return 2
        try:
            cli.fail(positionals[0], positionals[1], positionals[2], agent_id=options.get("--agent"))
        except ValueError as e:
            print(f"Invalid task: {e}")
            return 2

    elif command == "stats":
        cli.stats()

    elif command == "records":
        _, options = parse_options(args)
        try:
            limit = int(options.get("--limit", 20))
        except ValueError as e:
            print(f"Invalid option: {e}")
            return 2
        cli.records(limit=limit)

    elif command == "show":
        if not args:
            print("Usage: show <record_id>")
            return 2
        cli.show(args[0])

    elif command == "attest":
        _, options = parse_options(args)
        try:
            limit = int(options.get("--limit", 100))
        except ValueError as e:
            print(f"Invalid option: {e}")
            return 2
        cli.attest(limit=limit)

    elif command == "verify":
        return 0 if cli.verify() else 1

    elif command == "mine":
        positionals, options = parse_options(args)
        run = bool(positionals) and positionals[0] == "run"
        try:
            interval = float(options["--interval"]) if "--interval" in options else None
            blocks = int(options.get("--blocks", 1))
        except ValueError as e:
            print(f"Invalid option: {e}")
            return 2
        if run:
            cli.mine_run(interval)
        else:
            cli.mine(blocks=blocks)

    elif command == "balance":
        cli.balance(args[0] if args else None)

    elif command == "chain":
        _, options = parse_options(args)
        try:
            limit = int(options.get("--limit", 10))
        except ValueError as e:
            print(f"Invalid option: {e}")
            return 2
        cli.chain(limit=limit)

    else:
        print(f"Unknown command: {command}")
        print_usage()
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
