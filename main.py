import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.config import SystemConfig, load_config
from ledger.ledger_runtime import ManualClock, WalletError
from ring_wallet_system import RingWalletProgram, demonstrate_ring_wallet
from utils.utils import setup_logging, save_results, PerformanceMonitor, create_performance_report
from wallet.address_cloud import AddressCloud
from zk.zk_proofs import Ed25519Group, ZKError
from zk.holdings_proofs import BalanceOpening, HoldingsProver

logger = logging.getLogger(__name__)

DEFAULT_BENCHMARK_RING_SIZES = [2, 5, 10, 20]


class RingWalletBenchmark:
    """Measures proof generation and on-ledger verification per ring size"""

    def __init__(self, config: SystemConfig, iterations: int = 5):
        self.config = config
        self.iterations = iterations
        self.performance_monitor = PerformanceMonitor()

    async def benchmark_ring_size(self, ring_size: int) -> Dict[str, Any]:
        program = RingWalletProgram(self.config, clock=ManualClock())
        authority = Ed25519Group.base_mult(Ed25519Group.random_scalar())
        await program.initialize(authority)

        cloud_keys = AddressCloud.generate(ring_size, cloud_id=ring_size)
        cloud = await program.create_cloud(authority, cloud_keys.addresses, cloud_keys.cloud_id)

        sender = cloud_keys.user_key.public_key
        program.settlement.fund(sender, self.iterations * 1_000)
        recipient = Ed25519Group.base_mult(Ed25519Group.random_scalar())

        proof_sizes = []
        for _ in range(self.iterations):
            with self.performance_monitor.start_operation(f"ring_sign_{ring_size}"):
                proof, public_inputs = cloud_keys.sign_transfer(
                    cloud.address, sender, recipient, 1_000)
            proof_sizes.append(len(proof))

            with self.performance_monitor.start_operation(f"ring_transfer_{ring_size}"):
                await program.transfer_with_ring_proof(
                    cloud.address, proof, public_inputs, sender, recipient, 1_000)

        openings = {}
        for key in cloud_keys.keys:
            opening = BalanceOpening.random(1_000_000)
            openings[key.public_key] = opening
            program.balance_source.attest(key.public_key, opening.commitment())

        prover = HoldingsProver(range_bits=self.config.holdings_config.range_bits)
        threshold = ring_size * 1_000_000
        for _ in range(self.iterations):
            with self.performance_monitor.start_operation(f"holdings_prove_{ring_size}"):
                holdings = prover.prove(cloud.address, cloud.ring_public_keys, openings, threshold)
            with self.performance_monitor.start_operation(f"holdings_verify_{ring_size}"):
                await program.prove_holdings(cloud.address, holdings.proof_bytes, threshold)

        summary = self.performance_monitor.get_summary()['operations']
        return {
            'ring_size': ring_size,
            'ring_proof_bytes': max(proof_sizes),
            'holdings_proof_bytes': len(holdings.proof_bytes),
            'avg_sign_time': summary[f"ring_sign_{ring_size}"]['avg_duration'],
            'avg_transfer_time': summary[f"ring_transfer_{ring_size}"]['avg_duration'],
            'avg_holdings_prove_time': summary[f"holdings_prove_{ring_size}"]['avg_duration'],
            'avg_holdings_verify_time': summary[f"holdings_verify_{ring_size}"]['avg_duration'],
        }

    async def run(self, ring_sizes: List[int]) -> Dict[str, Any]:
        benchmarks = {}
        for ring_size in ring_sizes:
            logger.info(f"Benchmarking ring size {ring_size}")
            benchmarks[f"ring_{ring_size}"] = await self.benchmark_ring_size(ring_size)
        return {'benchmarks': benchmarks}


async def run_demo(config: SystemConfig, ring_size: int, transfers: int) -> bool:
    print("Ring Wallet: anonymous ring authorization demo")
    print("=" * 40)

    monitor = PerformanceMonitor()
    try:
        with monitor.start_operation("demo"):
            results = await demonstrate_ring_wallet(config, ring_size, transfers)
    except (WalletError, ZKError) as e:
        logger.exception(f"Demo failed: {e}")
        return False

    report_path = config.results_dir / "ring_wallet_demo.json"
    save_results(results, report_path)

    perf_path = config.results_dir / "performance_report.txt"
    with open(perf_path, "w") as f:
        f.write(create_performance_report(monitor))

    print(f"\nFull results saved to: {report_path}")
    print(f"Performance report: {perf_path}")
    return True


async def run_benchmark(config: SystemConfig, ring_sizes: List[int], iterations: int) -> bool:
    benchmark = RingWalletBenchmark(config, iterations=iterations)
    try:
        results = await benchmark.run(ring_sizes)
    except (WalletError, ZKError) as e:
        logger.exception(f"Benchmark failed: {e}")
        return False

    for name, data in results['benchmarks'].items():
        print(f"{name}: sign {data['avg_sign_time']*1000:.1f}ms, "
              f"verify+settle {data['avg_transfer_time']*1000:.1f}ms, "
              f"holdings verify {data['avg_holdings_verify_time']*1000:.1f}ms")

    save_results(results, config.results_dir / "ring_wallet_benchmark.json")
    with open(config.results_dir / "benchmark_performance_report.txt", "w") as f:
        f.write(create_performance_report(benchmark.performance_monitor))
    return True


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description='Ring Wallet: anonymous ring authorization')
    parser.add_argument('--mode', choices=['demo', 'benchmark'], default='demo')
    parser.add_argument('--ring-size', type=int, default=5,
                        help='Number of addresses in the demo cloud')
    parser.add_argument('--transfers', type=int, default=2,
                        help='Number of ring-authorized transfers in the demo')
    parser.add_argument('--ring-sizes', type=int, nargs='+',
                        default=DEFAULT_BENCHMARK_RING_SIZES,
                        help='Ring sizes to benchmark')
    parser.add_argument('--iterations', type=int, default=5,
                        help='Benchmark iterations per ring size')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--log-level', type=str, default='INFO')

    args = parser.parse_args(argv)

    config = load_config(Path(args.config))
    setup_logging(args.log_level, config.log_dir / "ring_wallet.log")

    if args.mode == 'demo':
        success = asyncio.run(run_demo(config, args.ring_size, args.transfers))
    else:
        success = asyncio.run(run_benchmark(config, args.ring_sizes, args.iterations))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
