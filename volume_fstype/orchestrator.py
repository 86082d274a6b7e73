#!/usr/bin/env python3

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import yaml
from kubernetes import client

from volume_fstype.attacher import WorkloadAttacher
from volume_fstype.classifier import FailureClassifier, expected_mount_failure_message
from volume_fstype.context import ClusterContext
from volume_fstype.errors import (
    AttachError,
    ClassificationMiss,
    MismatchError,
    PreflightError,
    ProvisioningError,
    UnexpectedAttachSuccess,
)
from volume_fstype.models import ScenarioResult, ScenarioState
from volume_fstype.provisioner import VolumeProvisioner
from volume_fstype.teardown import TeardownSequencer
from volume_fstype.utils.log_integration import collect_logs_on_test_failure
from volume_fstype.utils.metrics_collector import MetricsCollector
from volume_fstype.verifier import MountVerifier

EXT4_FSTYPE = "ext4"
EXT3_FSTYPE = "ext3"
INVALID_FSTYPE = "ext10"

_EXPECTED_FAILURES = (ProvisioningError, AttachError, UnexpectedAttachSuccess, MismatchError, ClassificationMiss)

DEFAULT_SCENARIOS = [
    {"type": "valid", "fstype": EXT3_FSTYPE, "expected": EXT3_FSTYPE},
    {"type": "default"},
    {"type": "invalid", "fstype": INVALID_FSTYPE},
]


class _ScenarioResources:
    """Everything a scenario created and must release"""

    def __init__(self):
        self.storage_class_name = None
        self.claim = None
        self.volumes = []
        self.workload = None

    @property
    def volume(self):
        return self.volumes[0] if self.volumes else None

    def failed_resources(self, namespace):
        resources = []
        if self.workload:
            resources.append({"type": "pod", "name": self.workload.name, "namespace": namespace})
        if self.claim:
            resources.append({"type": "pvc", "name": self.claim.name, "namespace": namespace})
        for volume in self.volumes:
            resources.append({"type": "pv", "name": volume.name, "namespace": namespace})
        return resources


class FstypeOrchestrator:
    """Runs the filesystem type scenarios against a cluster"""

    def __init__(self, config_file=None, config=None, namespace=None, context=None, metrics_collector=None):
        """Initialize the orchestrator with configuration

        Args:
            config_file: Path to YAML config file
            config: Already loaded configuration dictionary (takes precedence over config_file)
            namespace: Kubernetes namespace for test resources
            context: Prebuilt ClusterContext; built from kubeconfig when omitted
            metrics_collector: Metrics collector instance
        """
        self.logger = logging.getLogger(__name__)
        self._init_configuration(config_file, config, namespace)
        self._init_kubernetes_context(context)
        self._init_metrics_collector(metrics_collector)
        self._init_logging()
        self._init_components()
        self._init_resource_tracking()

        self.logger.info("Volume fstype orchestrator initialized")

    def _init_configuration(self, config_file, config, namespace):
        if config is None and config_file:
            if os.path.exists(config_file):
                with open(config_file, 'r') as f:
                    config = yaml.safe_load(f) or {}
                self.logger.info(f"Loaded config from {config_file}")
            else:
                self.logger.warning(f"Config file not found at {config_file}, using defaults")
        self.config = config or {}
        self.namespace = namespace or self.config.get('test', {}).get('namespace', 'volume-fstype')
        self.logger.info(f"Using namespace: {self.namespace}")

    def _init_kubernetes_context(self, context):
        if context is None:
            context = ClusterContext.from_config(self.config, namespace=self.namespace)
        self.context = context
        self.namespace = context.namespace
        self.core_v1 = context.core_v1

    def _init_metrics_collector(self, metrics_collector):
        self.metrics_collector = metrics_collector or MetricsCollector()

    def _init_logging(self):
        """Attach console/file handlers based on the logging config section"""
        log_config = self.config.get('logging', {})
        if not log_config.get('orchestrator_handlers', False):
            return

        self.logger.handlers.clear()
        self.logger.setLevel(getattr(logging, log_config.get('level', 'INFO')))
        # Prevent propagation to root logger to avoid duplicate logs
        self.logger.propagate = False
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

        if log_config.get('console_enabled', True):
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        if log_config.get('file_enabled', False):
            os.makedirs('logs', exist_ok=True)
            file_handler = logging.FileHandler(f'logs/orchestrator_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

    def _init_components(self):
        self.provisioner = VolumeProvisioner(self.context, self.metrics_collector)
        self.attacher = WorkloadAttacher(self.context, self.metrics_collector)
        self.verifier = MountVerifier(self.context)
        self.classifier = FailureClassifier(self.context)
        self.teardown = TeardownSequencer(self.context, self.metrics_collector)

    def _init_resource_tracking(self):
        self._lock = threading.Lock()
        self.scenario_results = []
        self.results = {
            'provision': {'success': 0, 'fail': 0},
            'attach': {'success': 0, 'fail': 0},
            'verify': {'success': 0, 'fail': 0},
            'classify': {'success': 0, 'fail': 0},
            'teardown': {'success': 0, 'fail': 0},
        }

    def _track(self, step, success):
        with self._lock:
            self.results[step]['success' if success else 'fail'] += 1

    def ensure_namespace_exists(self):
        """Create the namespace if it doesn't exist already"""
        try:
            self.core_v1.read_namespace(name=self.namespace)
            self.logger.info(f"Namespace '{self.namespace}' already exists")
        except client.exceptions.ApiException as e:
            if e.status != 404:
                self.logger.error(f"Error checking namespace: {e}")
                raise
            self.core_v1.create_namespace(body={
                "apiVersion": "v1",
                "kind": "Namespace",
                "metadata": {"name": self.namespace},
            })
            self.logger.info(f"Created namespace '{self.namespace}'")

    def check_schedulable_nodes(self):
        """Return names of Ready, schedulable nodes; raise PreflightError if none"""
        nodes = self.core_v1.list_node()
        ready = []
        for node in nodes.items:
            if node.spec.unschedulable:
                continue
            conditions = node.status.conditions or []
            if any(c.type == "Ready" and c.status == "True" for c in conditions):
                ready.append(node.metadata.name)
        if not ready:
            raise PreflightError("Unable to find ready and schedulable Node")
        self.logger.info(f"Found {len(ready)} ready and schedulable nodes")
        return ready

    def run_valid_type_scenario(self, fstype, expected_content):
        """Provision with `fstype` and expect the pod to report `expected_content`"""
        return self._run_scenario(f"fstype-{fstype or 'default'}", fstype, expected_content=expected_content)

    def run_default_type_scenario(self):
        """Provision without an fstype and expect the backend default"""
        expected = self.config.get('scenarios', {}).get('default_fstype', EXT4_FSTYPE)
        return self._run_scenario("fstype-default", "", expected_content=expected)

    def run_invalid_type_scenario(self, fstype=INVALID_FSTYPE):
        """Provision with an unsupported fstype and expect a diagnosed mount failure"""
        return self._run_scenario(f"fstype-invalid-{fstype}", fstype, expect_attach_failure=True)

    def _run_scenario(self, name, fstype, expected_content=None, expect_attach_failure=False):
        result = ScenarioResult(name=name, fstype=fstype)
        resources = _ScenarioResources()
        op_id = self.metrics_collector.start_operation(f"{name}-{int(time.time() * 1000)}")

        self.logger.info("=" * 60)
        self.logger.info(f"STARTING SCENARIO: {name} (fstype={fstype!r})")
        self.logger.info("=" * 60)

        try:
            result.enter(ScenarioState.PROVISIONING)
            self._provision(fstype, resources)

            result.enter(ScenarioState.ATTACHING)
            if expect_attach_failure:
                self._attach_expecting_failure(resources)
                result.enter(ScenarioState.CLASSIFYING)
                self._classify(resources)
            else:
                self._attach(resources)
                result.enter(ScenarioState.VERIFYING)
                self._verify(resources, expected_content)
        except Exception as e:
            self.logger.error(f"[{name}] FAILED: {type(e).__name__}: {e}", exc_info=not isinstance(e, _EXPECTED_FAILURES))
            result.record_failure(e)
            self._collect_failure_logs(name, resources)
        finally:
            result.enter(ScenarioState.TEARING_DOWN)
            self._teardown(resources, result)
            result.finish()
            self.metrics_collector.end_operation(op_id)
            with self._lock:
                self.scenario_results.append(result)

        verdict = "PASSED" if result.passed else "FAILED"
        self.logger.info(f"COMPLETED SCENARIO: {name} - {verdict}")
        self.logger.info("-" * 60)
        return result

    def _provision(self, fstype, resources):
        start_time = time.time()
        try:
            resources.claim, resources.volumes = self.provisioner.create_volume({"fstype": fstype})
        except ProvisioningError as e:
            resources.claim = e.claim
            resources.storage_class_name = e.storage_class_name
            self._record_step('provision', start_time, False)
            raise
        resources.storage_class_name = resources.claim.storage_class_name
        self._record_step('provision', start_time, True)

    def _attach(self, resources):
        start_time = time.time()
        try:
            resources.workload = self.attacher.attach_workload(resources.claim)
            self.attacher.verify_volume_attached(resources.workload, resources.volumes)
        except AttachError as e:
            resources.workload = resources.workload or e.workload
            self._record_step('attach', start_time, False)
            raise
        self._record_step('attach', start_time, True)

    def _attach_expecting_failure(self, resources):
        start_time = time.time()
        try:
            resources.workload = self.attacher.attach_workload(resources.claim)
        except AttachError as e:
            resources.workload = e.workload
            self.logger.info(f"Pod creation failed as expected: {e.reason}")
            self._record_step('attach', start_time, True)
            return
        self._record_step('attach', start_time, False)
        raise UnexpectedAttachSuccess(resources.workload)

    def _verify(self, resources, expected_content):
        start_time = time.time()
        try:
            self.verifier.verify_fstype(resources.workload, expected_content)
        except Exception:
            self._record_step('verify', start_time, False)
            raise
        self._record_step('verify', start_time, True)

    def _classify(self, resources):
        start_time = time.time()
        volume_name = resources.volume.name
        found = self.classifier.confirm_expected_failure(self.namespace, volume_name)
        self._record_step('classify', start_time, found)
        if not found:
            raise ClassificationMiss(volume_name, expected_mount_failure_message(volume_name))

    def _teardown(self, resources, result):
        start_time = time.time()
        volume = resources.volume
        workload = resources.workload
        claim = resources.claim
        errors = self.teardown.teardown(
            workload,
            claim,
            volume.volume_path if volume else None,
            workload.node_name if workload else None,
            storage_class_name=resources.storage_class_name,
        )
        result.teardown_errors.extend(errors)
        self._record_step('teardown', start_time, not errors)

    def _record_step(self, step, start_time, success):
        self._track(step, success)
        self.metrics_collector.track_step(step, start_time, success)

    def _collect_failure_logs(self, name, resources):
        failure_config = self.config.get('failure_logs', {})
        if not failure_config.get('enabled', False):
            return
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        try:
            logs_path = collect_logs_on_test_failure(
                f"{name}_{timestamp}",
                self.metrics_collector,
                failed_resources=resources.failed_resources(self.namespace),
                output_dir=failure_config.get('output_dir', 'logs'),
            )
            self.logger.info(f"Collected failure logs to: {logs_path}")
        except Exception as e:
            self.logger.error(f"Error collecting failure logs: {e}")

    def _scenario_callables(self, scenarios):
        callables = []
        for scenario in scenarios:
            scenario_type = scenario.get('type')
            if scenario_type == 'valid':
                fstype = scenario['fstype']
                expected = scenario.get('expected', fstype)
                callables.append(lambda f=fstype, e=expected: self.run_valid_type_scenario(f, e))
            elif scenario_type == 'default':
                callables.append(self.run_default_type_scenario)
            elif scenario_type == 'invalid':
                fstype = scenario.get('fstype', INVALID_FSTYPE)
                callables.append(lambda f=fstype: self.run_invalid_type_scenario(f))
            else:
                raise ValueError(f"Unknown scenario type: {scenario_type}")
        return callables

    def run_test(self, scenarios=None):
        """Run the configured scenarios and return the report

        Args:
            scenarios: Optional list of scenario dicts overriding the config,
                e.g. [{'type': 'valid', 'fstype': 'ext3', 'expected': 'ext3'}]
        """
        scenario_config = self.config.get('scenarios', {})
        scenarios = scenarios or scenario_config.get('list', DEFAULT_SCENARIOS)
        callables = self._scenario_callables(scenarios)
        start_time = time.time()

        self.ensure_namespace_exists()
        self.check_schedulable_nodes()

        workers = scenario_config.get('parallel_workers', 1)
        self.logger.info(f"Running {len(callables)} scenarios with {workers} worker(s)")
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [executor.submit(run) for run in callables]
                for future in futures:
                    future.result()
        else:
            for run in callables:
                run()

        self.metrics_collector.collect_volume_events(self.core_v1, self.namespace)
        self.metrics_collector.collect_controller_metrics(self.config)
        self.logger.info(f"Scenarios completed in {time.time() - start_time:.2f} seconds")
        return self._generate_report()

    @property
    def all_passed(self):
        return bool(self.scenario_results) and all(r.passed for r in self.scenario_results)

    def _generate_report(self):
        scenarios = [result.to_dict() for result in self.scenario_results]
        passed = sum(1 for result in self.scenario_results if result.passed)
        report = {
            "namespace": self.namespace,
            "scenarios": scenarios,
            "operations": {
                step: dict(counts, success_rate=self._calculate_success_rate(counts))
                for step, counts in self.results.items()
            },
            "summary": {
                "total": len(scenarios),
                "passed": passed,
                "failed": len(scenarios) - passed,
            },
        }
        self._print_report_summary(report)
        return report

    def _calculate_success_rate(self, result):
        total = result['success'] + result['fail']
        if total == 0:
            return 0
        return (result['success'] / total) * 100

    def _print_report_summary(self, report):
        self.logger.info("===== Volume FSType Test Summary =====")
        self.logger.info("--- Steps ---")
        for step, data in report['operations'].items():
            self.logger.info(f"{step}: {data['success']} succeeded, {data['fail']} failed ({data['success_rate']:.1f}%)")
        self.logger.info("--- Scenarios ---")
        for scenario in report['scenarios']:
            line = f"{scenario['name']}: {scenario['verdict'].upper()}"
            if scenario['failure_reason']:
                line += f" - {scenario['failure_reason']}"
            self.logger.info(line)
            for teardown_error in scenario['teardown_errors']:
                self.logger.info(f"  teardown: {teardown_error}")
        self.logger.info("======================================")
