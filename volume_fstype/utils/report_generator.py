import datetime
import json
import os
import platform
import socket
import subprocess
from pathlib import Path

import psutil


class ReportGenerator:
    """Generate scenario reports as JSON and plain-text summaries"""

    def __init__(self, output_dir="reports"):
        """Initialize report generator

        Args:
            output_dir: Base directory to store reports
        """
        self.base_output_dir = output_dir
        Path(output_dir).mkdir(parents=True, exist_ok=True)

    def _get_output_dir(self, test_type):
        output_dir = os.path.join(self.base_output_dir, test_type)
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        return output_dir

    def _collect_system_info(self):
        """Collect information about the machine and cluster running the scenarios"""
        system_info = {
            "hostname": socket.gethostname(),
            "platform": platform.platform(),
            "python_version": platform.python_version(),
            "cpu_count": psutil.cpu_count(),
            "memory_total_gb": round(psutil.virtual_memory().total / (1024**3), 2),
            "timestamp": datetime.datetime.now().isoformat(),
        }

        try:
            kubectl_version = subprocess.check_output(
                ["kubectl", "version", "-o", "yaml"], stderr=subprocess.STDOUT
            ).decode('utf-8')
            system_info["kubernetes_version"] = kubectl_version.strip()
        except (subprocess.SubprocessError, FileNotFoundError):
            system_info["kubernetes_version"] = "Unknown"

        return system_info

    def generate_json_report(self, test_results, test_name, metrics=None):
        """Generate detailed JSON report

        Args:
            test_results: Report dictionary returned by FstypeOrchestrator.run_test
            test_name: Name of the test run
            metrics: Optional dictionary from MetricsCollector.get_all_metrics

        Returns:
            Path to the generated report
        """
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        output_dir = self._get_output_dir("fstype")
        filepath = os.path.join(output_dir, f"{test_name}_{timestamp}.json")

        report = {
            "test_name": test_name,
            "test_type": "fstype",
            "timestamp": timestamp,
            "system_info": self._collect_system_info(),
            "results": test_results,
        }
        if metrics is not None:
            report["metrics"] = metrics

        with open(filepath, 'w') as f:
            json.dump(report, f, indent=2, default=str)

        return filepath

    def generate_summary_report(self, test_results, test_name):
        """Generate a human-readable summary report

        Returns:
            Path to the generated report
        """
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        output_dir = self._get_output_dir("fstype")
        filepath = os.path.join(output_dir, f"{test_name}_{timestamp}_summary.txt")
        system_info = self._collect_system_info()

        with open(filepath, 'w') as f:
            f.write(f"{'='*80}\n")
            f.write(f"VOLUME FSTYPE TEST REPORT: {test_name.upper()}\n")
            f.write(f"{'='*80}\n\n")

            f.write("SYSTEM INFORMATION\n")
            f.write(f"{'-'*80}\n")
            f.write(f"Hostname: {system_info['hostname']}\n")
            f.write(f"Platform: {system_info['platform']}\n")
            f.write(f"Python Version: {system_info['python_version']}\n")
            f.write(f"CPU Count: {system_info['cpu_count']}\n")
            f.write(f"Memory Total: {system_info['memory_total_gb']} GB\n")
            f.write(f"Test Timestamp: {system_info['timestamp']}\n\n")

            f.write("SCENARIO RESULTS\n")
            f.write(f"{'-'*80}\n")
            self._write_scenario_results(f, test_results.get("scenarios", []))

            summary = test_results.get("summary", {})
            f.write(f"\nPassed: {summary.get('passed', 0)}  Failed: {summary.get('failed', 0)}\n")

            f.write(f"\n{'='*80}\n")
            f.write(f"END OF REPORT: {datetime.datetime.now().isoformat()}\n")
            f.write(f"{'='*80}\n")

        return filepath

    def _write_scenario_results(self, file, scenarios):
        for scenario in scenarios:
            file.write(f"\n{scenario['name'].upper()} (fstype={scenario['fstype']!r})\n")
            file.write(f"{'-'*40}\n")
            file.write(f"Status: {'SUCCESS' if scenario['verdict'] == 'pass' else 'FAILED'}\n")
            if scenario.get('failure_reason'):
                file.write(f"Reason: {scenario['failure_reason']}\n")
            if scenario.get('duration') is not None:
                file.write(f"Duration: {scenario['duration']:.2f} seconds\n")
            file.write(f"States: {' -> '.join(scenario.get('states', []))}\n")

            error = scenario.get('error')
            if error:
                file.write(f"Error: {error['type']}: {error['message']}\n")
                if 'expected' in error:
                    file.write(f"  Expected: {error['expected']}\n")
                    file.write(f"  Actual: {error['actual']}\n")
            for teardown_error in scenario.get('teardown_errors', []):
                file.write(f"Teardown: {teardown_error}\n")
