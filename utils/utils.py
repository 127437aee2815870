"""
Utilities for the Ring Wallet
Logging setup, performance monitoring and result reporting
"""

import json
import logging
import platform
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import psutil

logger = logging.getLogger(__name__)


@dataclass
class PerformanceMetrics:
    operation: str
    duration_seconds: float
    cpu_percent: float
    memory_mb: float
    timestamp: float
    additional_data: Dict[str, Any] = field(default_factory=dict)


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None):
    """Configure root logging to a timestamped file and the console"""
    if log_file is None:
        log_file = Path("logs") / \
            f"ring_wallet_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Clear existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger.info(f"Logging initialized. Log file: {log_file}")
    return logger


class PerformanceMonitor:
    """Times operations and samples process CPU and memory"""

    def __init__(self):
        self.metrics: List[PerformanceMetrics] = []
        self.process = psutil.Process()

    def start_operation(self, operation_name: str, **additional_data) -> 'OperationContext':
        return OperationContext(self, operation_name, additional_data)

    def record_metric(self, metric: PerformanceMetrics):
        self.metrics.append(metric)

    def durations(self, operation: str) -> List[float]:
        return [m.duration_seconds for m in self.metrics if m.operation == operation]

    def get_summary(self) -> Dict[str, Any]:
        operation_groups: Dict[str, List[PerformanceMetrics]] = {}
        for metric in self.metrics:
            operation_groups.setdefault(metric.operation, []).append(metric)

        summary = {
            'total_operations': len(self.metrics),
            'operations': {}
        }

        for op_name, metrics in operation_groups.items():
            durations = np.array([m.duration_seconds for m in metrics])
            cpu_usages = [m.cpu_percent for m in metrics if m.cpu_percent > 0]
            memory_usages = [m.memory_mb for m in metrics if m.memory_mb > 0]
            total = float(durations.sum())

            summary['operations'][op_name] = {
                'count': len(metrics),
                'total_duration': total,
                'avg_duration': float(durations.mean()),
                'median_duration': float(np.median(durations)),
                'p95_duration': float(np.percentile(durations, 95)),
                'min_duration': float(durations.min()),
                'max_duration': float(durations.max()),
                'std_duration': float(durations.std()) if len(durations) > 1 else 0.0,
                'avg_cpu_percent': float(np.mean(cpu_usages)) if cpu_usages else 0.0,
                'avg_memory_mb': float(np.mean(memory_usages)) if memory_usages else 0.0,
                'peak_memory_mb': max(memory_usages) if memory_usages else 0.0,
                'throughput_ops_per_sec': len(metrics) / total if total > 0 else 0.0
            }

        summary['total_duration'] = sum(
            op_data['total_duration'] for op_data in summary['operations'].values())

        return summary

    def save_metrics(self, filepath: Path):
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        metrics_data = {
            'metrics': [asdict(m) for m in self.metrics],
            'summary': self.get_summary(),
            'system_info': get_system_info(),
            'timestamp': datetime.now().isoformat()
        }

        with open(filepath, 'w') as f:
            json.dump(metrics_data, f, indent=2, default=str)

    def reset(self):
        self.metrics.clear()


class OperationContext:
    """Context manager recording one PerformanceMetrics entry on exit"""

    def __init__(self, monitor: PerformanceMonitor, operation_name: str,
                 additional_data: Optional[Dict[str, Any]] = None):
        self.monitor = monitor
        self.operation_name = operation_name
        self.additional_data = additional_data or {}
        self.start_time = 0.0
        self.start_memory = 0.0

    def _sample(self):
        try:
            return (self.monitor.process.cpu_percent(),
                    self.monitor.process.memory_info().rss / 1024 / 1024)
        except psutil.Error as e:
            logger.debug(f"Performance monitoring error: {e}")
            return 0.0, 0.0

    def __enter__(self):
        # first cpu_percent() call primes the counter
        _, self.start_memory = self._sample()
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.perf_counter() - self.start_time
        cpu_percent, end_memory = self._sample()

        self.monitor.record_metric(PerformanceMetrics(
            operation=self.operation_name,
            duration_seconds=duration,
            cpu_percent=cpu_percent,
            memory_mb=max(self.start_memory, end_memory),
            timestamp=time.time(),
            additional_data={**self.additional_data, 'exception': exc_type is not None}
        ))


def get_system_info() -> Dict[str, Any]:
    info = {
        'platform': platform.platform(),
        'processor': platform.processor(),
        'python_version': platform.python_version(),
        'machine': platform.machine(),
        'system': platform.system(),
        'timestamp': datetime.now().isoformat()
    }

    try:
        vm = psutil.virtual_memory()
        info.update({
            'cpu_count_physical': psutil.cpu_count(logical=False),
            'cpu_count_logical': psutil.cpu_count(logical=True),
            'total_memory_gb': round(vm.total / 1024 / 1024 / 1024, 2),
            'available_memory_gb': round(vm.available / 1024 / 1024 / 1024, 2),
            'memory_percent_used': vm.percent,
        })
    except (psutil.Error, OSError) as e:
        logger.debug(f"System info error: {e}")
        info['psutil_error'] = str(e)

    return info


def to_serializable(obj: Any) -> Any:
    """Convert results (dataclasses, enums, bytes, numpy values) to JSON types"""
    if hasattr(obj, '__dataclass_fields__'):
        return to_serializable(asdict(obj))
    if isinstance(obj, dict):
        return {str(k.hex() if isinstance(k, bytes) else k): to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_serializable(item) for item in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).hex()
    if isinstance(obj, (np.integer, np.floating)):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


def save_results(results: Dict[str, Any], filepath: Path):
    """Save results as JSON with metadata plus a text summary beside it"""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    enhanced_results = {
        'metadata': {
            'generated_at': datetime.now().isoformat(),
            'system_info': get_system_info(),
            'file_path': str(filepath)
        },
        'data': to_serializable(results)
    }

    with open(filepath, 'w') as f:
        json.dump(enhanced_results, f, indent=2, default=str)

    summary_path = filepath.parent / f"{filepath.stem}_summary.txt"
    with open(summary_path, 'w') as f:
        f.write(create_results_summary(results))

    logger.info(f"Results saved to {filepath}")
    logger.info(f"Summary saved to {summary_path}")


def create_results_summary(results: Dict[str, Any]) -> str:
    summary = []
    summary.append("=" * 80)
    summary.append("RING WALLET - RESULTS SUMMARY")
    summary.append("=" * 80)
    summary.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    summary.append("")

    cloud = results.get('cloud')
    if isinstance(cloud, dict):
        summary.append("PROBABILITY CLOUD:")
        summary.append(f"  Cloud ID: {cloud.get('cloud_id')}")
        summary.append(f"  Addresses: {cloud.get('total_addresses')}")
        summary.append(f"  Anonymity Set: {cloud.get('anonymity_set')}")
        summary.append("")

    transfers = results.get('transfers')
    if transfers:
        summary.append("RING TRANSFERS:")
        for i, transfer in enumerate(transfers):
            summary.append(
                f"  Transfer {i}: {transfer.get('amount')} lamports "
                f"in {format_duration(transfer.get('verification_time', 0.0))}")
        summary.append("")

    if 'holdings_threshold' in results:
        summary.append("HOLDINGS ATTESTATION:")
        summary.append(f"  Threshold met: {results['holdings_threshold']}")
        summary.append("")

    benchmarks = results.get('benchmarks')
    if isinstance(benchmarks, dict):
        summary.append("BENCHMARK RESULTS:")
        for bench_name, bench_data in benchmarks.items():
            summary.append(f"  {bench_name}:")
            if isinstance(bench_data, dict):
                for key, value in bench_data.items():
                    if isinstance(value, float):
                        summary.append(f"    {key}: {value:.4f}")
                    else:
                        summary.append(f"    {key}: {value}")
        summary.append("")

    metrics = results.get('metrics')
    if isinstance(metrics, dict):
        summary.append("PROGRAM METRICS:")
        for key, value in metrics.items():
            summary.append(f"  {key}: {value}")
        summary.append("")

    summary.append("=" * 80)
    return "\n".join(summary)


def create_performance_report(metrics: PerformanceMonitor) -> str:
    summary = metrics.get_summary()

    report = []
    report.append("=" * 80)
    report.append("RING WALLET - PERFORMANCE REPORT")
    report.append("=" * 80)
    report.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    report.append(f"Total Operations: {summary.get('total_operations', 0)}")
    report.append(f"Total Duration: {summary.get('total_duration', 0):.3f}s")
    report.append("")

    if summary['operations']:
        report.append("OPERATION BREAKDOWN:")
        report.append("-" * 60)

        for op_name, op_data in summary['operations'].items():
            report.append(f"\n{op_name.upper()}:")
            report.append(f"  Executions: {op_data['count']}")
            report.append(f"  Total Time: {op_data['total_duration']:.3f}s")
            report.append(f"  Average Time: {op_data['avg_duration']:.4f}s")
            report.append(f"  P95 Time: {op_data['p95_duration']:.4f}s")
            report.append(
                f"  Min/Max Time: {op_data['min_duration']:.4f}s / {op_data['max_duration']:.4f}s")
            report.append(
                f"  Throughput: {op_data['throughput_ops_per_sec']:.2f} ops/sec")

            if op_data['peak_memory_mb'] > 0:
                report.append(
                    f"  Peak Memory: {op_data['peak_memory_mb']:.1f} MB")
    else:
        report.append("No performance data available.")

    report.append("")
    report.append("=" * 80)
    return "\n".join(report)


def format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds*1000:.1f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    minutes = int(seconds // 60)
    return f"{minutes}m {seconds % 60:.1f}s"


__all__ = [
    'PerformanceMetrics',
    'PerformanceMonitor',
    'OperationContext',
    'setup_logging',
    'get_system_info',
    'to_serializable',
    'save_results',
    'create_results_summary',
    'create_performance_report',
    'format_duration',
]
