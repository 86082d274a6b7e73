import logging
import re
import threading
import time
from collections import defaultdict

import psutil
import requests


class MetricsCollector:
    """Collect and store timing metrics during scenario execution"""

    def __init__(self):
        """Initialize metrics collector"""
        self.operations = {}
        self.system_metrics = {}
        self.controller_metrics = {}

        self.step_metrics = {
            "durations": defaultdict(list),
            "success_rates": defaultdict(lambda: {"success": 0, "failure": 0}),
        }

        self.volume_metrics = {
            "attach_timing": {},
            "detach_timing": {},
        }

        self.k8s_events = {
            "volume_events": [],
            "binding_times": {},
            "pod_startup_delays": {},
        }

        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def start_operation(self, name=None):
        """Start timing an operation

        Args:
            name: Name of the operation (optional)

        Returns:
            Operation ID
        """
        with self._lock:
            op_id = name or f"op_{len(self.operations) + 1}"
            self.operations[op_id] = {"start_time": time.time()}
        self._collect_system_metrics(op_id)
        return op_id

    def end_operation(self, op_id):
        """End timing an operation and return its duration in seconds"""
        if op_id not in self.operations:
            self.logger.warning(f"Operation {op_id} not found")
            return 0

        operation = self.operations[op_id]
        operation["end_time"] = time.time()
        operation["duration"] = operation["end_time"] - operation["start_time"]
        self._collect_system_metrics(op_id, end=True)
        return operation["duration"]

    def _collect_system_metrics(self, op_id, end=False):
        """Sample CPU and memory of the machine driving the scenarios"""
        prefix = "end_" if end else "start_"
        memory = psutil.virtual_memory()
        metrics = {
            f"{prefix}cpu_percent": psutil.cpu_percent(interval=None),
            f"{prefix}memory_percent": memory.percent,
        }
        with self._lock:
            self.system_metrics.setdefault(op_id, {}).update(metrics)

    def track_step(self, step_name, start_time, success=True):
        """Track one workflow step (provision, attach, verify, classify, teardown)

        Args:
            step_name: Name of the step
            start_time: time.time() when the step started
            success: Whether the step succeeded
        """
        duration = time.time() - start_time
        status = "success" if success else "failure"
        with self._lock:
            self.step_metrics["durations"][step_name].append(duration)
            self.step_metrics["success_rates"][step_name][status] += 1

    def track_volume_attachment(self, volume_path, start_time):
        self.volume_metrics["attach_timing"][volume_path] = time.time() - start_time

    def track_volume_detachment(self, volume_path, duration):
        self.volume_metrics["detach_timing"][volume_path] = duration

    def track_pv_pvc_binding(self, pvc_name, pv_name, bind_time):
        self.k8s_events["binding_times"][f"{pvc_name}-{pv_name}"] = bind_time

    def track_pod_startup_delay(self, pod_name, create_time, ready_time):
        self.k8s_events["pod_startup_delays"][pod_name] = ready_time - create_time

    def collect_volume_events(self, core_v1, namespace):
        """Snapshot volume-related events of the namespace

        Args:
            core_v1: kubernetes CoreV1Api instance
            namespace: Kubernetes namespace to collect events from
        """
        try:
            events = core_v1.list_namespaced_event(namespace=namespace)
        except Exception as e:
            self.logger.warning(f"Error collecting volume events: {e}")
            return

        with self._lock:
            for event in events.items:
                if event.involved_object.kind in ["PersistentVolume", "PersistentVolumeClaim", "Pod"]:
                    self.k8s_events["volume_events"].append({
                        "timestamp": time.time(),
                        "name": event.involved_object.name,
                        "kind": event.involved_object.kind,
                        "reason": event.reason,
                        "message": event.message,
                        "count": event.count,
                    })

    def collect_controller_metrics(self, config=None):
        """Scrape Prometheus text from the configured controller endpoints

        Args:
            config: Configuration dictionary with a metrics_collection section
        """
        if not config:
            return
        metrics_config = config.get('metrics_collection', {})
        if not metrics_config.get('enabled', False):
            return

        for endpoint in metrics_config.get('endpoints', []):
            try:
                response = requests.get(endpoint, timeout=metrics_config.get('timeout', 5))
                if response.status_code == 200:
                    self.controller_metrics[endpoint] = self.parse_prometheus_metrics(response.text)
                else:
                    self.logger.warning(f"Metrics endpoint {endpoint} returned {response.status_code}")
            except requests.RequestException as e:
                self.logger.warning(f"Failed to collect metrics from {endpoint}: {e}")

    def parse_prometheus_metrics(self, metrics_text):
        """Parse Prometheus text exposition into {name: [{labels, value}]}"""
        parsed_metrics = {}
        if not metrics_text:
            return parsed_metrics

        pattern = r'^([a-zA-Z_:][a-zA-Z0-9_:]*)\s*({[^}]*})?\s*([0-9.eE+-]+)'
        for line in metrics_text.split('\n'):
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            match = re.match(pattern, line)
            if match:
                parsed_metrics.setdefault(match.group(1), []).append({
                    "labels": match.group(2) or "",
                    "value": float(match.group(3)),
                })
        return parsed_metrics

    def get_all_metrics(self):
        """Get all collected metrics as plain dictionaries"""
        steps = {}
        for step_name, durations in self.step_metrics["durations"].items():
            rates = self.step_metrics["success_rates"][step_name]
            steps[step_name] = {
                "count": len(durations),
                "average_duration": sum(durations) / len(durations) if durations else None,
                "max_duration": max(durations) if durations else None,
                "success": rates["success"],
                "failure": rates["failure"],
            }
        return {
            "operations": self.operations,
            "system": self.system_metrics,
            "steps": steps,
            "volumes": self.volume_metrics,
            "k8s_events": self.k8s_events,
            "controller": self.controller_metrics,
        }
