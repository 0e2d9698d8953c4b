"""Instance bootstrap script.

Each instance launched by the autoscaling group runs this script once at boot
(Amazon Linux 2). It serves a status page through Apache so the load balancer
has something to health-check, and starts a detached loop that periodically
saturates CPU and memory with `stress` so the scaling alarms have load to react to.
"""

import base64
import logging

from asglab.config import StackSettings

logger = logging.getLogger(__name__)

STRESS_SCRIPT_PATH = "/tmp/auto-stress.sh"
STRESS_LOG_PATH = "/var/log/auto-stress.log"
WEB_ROOT_INDEX = "/var/www/html/index.html"
METADATA_URL = "http://169.254.169.254/latest/meta-data"


def _describe_interval(seconds: int) -> str:
    if seconds % 60 == 0:
        minutes = seconds // 60
        return "every minute" if minutes == 1 else f"every {minutes} minutes"
    return f"every {seconds} seconds"


def render_user_data(settings: StackSettings | None = None) -> str:
    """Render the bootstrap shell script for lab instances.

    Args:
        settings: Stack settings (stress schedule and sizing); defaults if None

    Returns:
        Bash script text
    """
    settings = settings or StackSettings()
    interval = settings.stress_interval
    duration = settings.stress_duration
    cpu_workers = settings.stress_cpu_workers
    vm_bytes = settings.stress_vm_bytes

    # $(...) inside the page is expanded at boot; inside the quoted heredoc it is
    # expanded each time the stress loop logs.
    return f"""#!/bin/bash
# Update system (Amazon Linux 2)
yum update -y

# Install Apache and stress
amazon-linux-extras install -y epel
yum install -y httpd stress

# Status page
echo "<!DOCTYPE html>
<html>
<head>
    <title>Autoscaling Test</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 40px; }}
        .info {{ background: #f0f0f0; padding: 20px; border-radius: 5px; }}
    </style>
</head>
<body>
    <h1>Autoscaling Test - AWS + Pulumi</h1>
    <div class='info'>
        <h2>Instance Information:</h2>
        <p><strong>Instance ID:</strong> $(curl -s {METADATA_URL}/instance-id)</p>
        <p><strong>Availability Zone:</strong> $(curl -s {METADATA_URL}/placement/availability-zone)</p>
        <p><strong>Auto Stress:</strong> RUNNING ({_describe_interval(interval)})</p>
    </div>
</body>
</html>" > {WEB_ROOT_INDEX}

# Periodic stress loop
cat > {STRESS_SCRIPT_PATH} << 'EOF'
#!/bin/bash
while true; do
    sleep {interval}
    echo "$(date): Starting automatic stress test" >> {STRESS_LOG_PATH}
    # CPU: {cpu_workers} workers for {duration} seconds
    stress --cpu {cpu_workers} --timeout {duration}s &
    # Memory: 1 worker, {vm_bytes} for {duration} seconds
    stress --vm 1 --vm-bytes {vm_bytes} --timeout {duration}s &
done
EOF

chmod +x {STRESS_SCRIPT_PATH}

# Run in background
nohup {STRESS_SCRIPT_PATH} > /dev/null 2>&1 &

# Start Apache
systemctl start httpd
systemctl enable httpd

echo "Setup complete - system ready for autoscaling"
"""


def encode_user_data(script: str) -> str:
    """Base64-encode a script as launch templates require."""
    encoded = base64.b64encode(script.encode("utf-8")).decode("ascii")
    logger.debug(f"Encoded user data: {len(script)} bytes -> {len(encoded)} base64 chars")
    return encoded
