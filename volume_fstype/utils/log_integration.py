import json
import logging
import os
import shlex
import shutil
import subprocess
import tarfile
from datetime import datetime


def execute_command(command, file, shell=False):
    """Execute a command and write output to file"""
    print(command + "\n", file=file, flush=True)
    if shell:
        subprocess.run(command, shell=True, text=True, stderr=subprocess.STDOUT, stdout=file)
    else:
        subprocess.run(shlex.split(command), text=True, stderr=subprocess.STDOUT, stdout=file)
    print("\n", file=file, flush=True)


def collect_resource_logs(resource_type, resource_name, namespace="default", output_dir="logs"):
    """
    Collect descriptions, manifests and events of one Kubernetes resource

    Args:
        resource_type: Type of resource (pod, pvc, pv)
        resource_name: Name of the resource
        namespace: Kubernetes namespace (ignored for pv)
        output_dir: Base directory for collected logs

    Returns:
        Path to the directory containing collected logs
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Collecting logs for {resource_type}/{resource_name} in namespace {namespace}")

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    results_dir = os.path.join(output_dir, f"resource_{resource_type}_{resource_name}_{timestamp}")
    os.makedirs(results_dir, exist_ok=True)
    ns_flag = "" if resource_type == "pv" else f" -n {namespace}"

    try:
        with open(os.path.join(results_dir, f"{resource_type}_description.txt"), "w") as f:
            execute_command(command=f"kubectl describe {resource_type} {resource_name}{ns_flag}", file=f)

        with open(os.path.join(results_dir, f"{resource_type}_yaml.yaml"), "w") as f:
            execute_command(command=f"kubectl get {resource_type} {resource_name}{ns_flag} -o yaml", file=f)

        with open(os.path.join(results_dir, "events.txt"), "w") as f:
            execute_command(
                command=f"kubectl get events -n {namespace} --field-selector involvedObject.name={resource_name} --sort-by=.lastTimestamp",
                file=f
            )

        if resource_type == "pod":
            with open(os.path.join(results_dir, "container.log"), "w") as f:
                execute_command(command=f"kubectl logs {resource_name} -n {namespace} --all-containers", file=f)

            node_result = subprocess.run(
                ["kubectl", "get", "pod", resource_name, "-n", namespace, "-o", "jsonpath={.spec.nodeName}"],
                capture_output=True,
                text=True
            )
            node_name = node_result.stdout.strip()
            if node_name:
                with open(os.path.join(results_dir, "node_info.txt"), "w") as f:
                    execute_command(command=f"kubectl describe node {node_name}", file=f)

        logger.info(f"Resource logs collected successfully to: {results_dir}")
        return results_dir

    except Exception as e:
        logger.error(f"Error collecting resource logs: {e}", exc_info=True)
        return None


def collect_logs_on_test_failure(test_name, metrics_collector=None, failed_resources=None, output_dir="logs"):
    """
    Collect logs when a scenario fails, and include metrics if available

    Args:
        test_name: Name of the failed scenario run
        metrics_collector: Optional metrics collector instance
        failed_resources: Optional list of dicts with 'type', 'name', and 'namespace' keys
        output_dir: Base directory for collected logs

    Returns:
        Path to the collected logs tarball
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Test '{test_name}' failed, collecting logs")

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    main_dir = os.path.join(output_dir, f"{test_name}_failure_{timestamp}")
    os.makedirs(main_dir, exist_ok=True)

    if failed_resources:
        resources_dir = os.path.join(main_dir, "failed_resources")
        os.makedirs(resources_dir, exist_ok=True)

        for resource in failed_resources:
            resource_type = resource.get("type", "unknown")
            resource_name = resource.get("name", "unknown")
            namespace = resource.get("namespace", "default")

            resource_logs_dir = collect_resource_logs(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
                output_dir=output_dir
            )

            if resource_logs_dir and os.path.exists(resource_logs_dir):
                logger.info(f"Adding {resource_type}/{resource_name} logs to failure archive")
                target_dir = os.path.join(resources_dir, f"{resource_type}_{resource_name}")
                shutil.copytree(resource_logs_dir, target_dir, dirs_exist_ok=True)

    if metrics_collector:
        try:
            metrics_dir = os.path.join(main_dir, "metrics")
            os.makedirs(metrics_dir, exist_ok=True)
            metrics_file = os.path.join(metrics_dir, "test_metrics.json")
            with open(metrics_file, "w") as f:
                json.dump(metrics_collector.get_all_metrics(), f, indent=2, default=str)
            logger.info(f"Metrics saved to {metrics_file}")
        except Exception as e:
            logger.error(f"Error saving metrics: {e}")

    tarball_path = f"{main_dir}.tgz"
    with tarfile.open(tarball_path, "w:gz") as tar:
        tar.add(main_dir, arcname=os.path.basename(main_dir))

    logger.info(f"Comprehensive failure logs collected to: {tarball_path}")
    return tarball_path
