"""
CloudWatch as the monitoring provider.

Only the narrow surface the deploy tooling needs: alarm definitions, a
dashboard body and single metric data points.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from webapp_deploy.aws.aws_clients import AWSClientManager

logger = logging.getLogger(__name__)

COMPARISON_OPERATORS = {
    "GreaterThanThreshold",
    "GreaterThanOrEqualToThreshold",
    "LessThanThreshold",
    "LessThanOrEqualToThreshold",
}


@dataclass
class AlarmDefinition:
    """Alarm keyed by (namespace, metric, dimensions)."""
    name: str
    metric_name: str
    namespace: str
    threshold: float
    comparison_operator: str
    evaluation_periods: int
    dimensions: Dict[str, str] = field(default_factory=dict)
    statistic: str = "Average"
    period: int = 300
    description: str = ""
    actions: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.comparison_operator not in COMPARISON_OPERATORS:
            raise ValueError(f"Invalid comparison_operator: {self.comparison_operator}")
        if self.evaluation_periods < 1:
            raise ValueError("evaluation_periods must be at least 1")

    def to_request(self) -> Dict[str, Any]:
        request = {
            'AlarmName': self.name,
            'AlarmDescription': self.description,
            'MetricName': self.metric_name,
            'Namespace': self.namespace,
            'Statistic': self.statistic,
            'Period': self.period,
            'Threshold': self.threshold,
            'ComparisonOperator': self.comparison_operator,
            'EvaluationPeriods': self.evaluation_periods,
            'Dimensions': [{'Name': k, 'Value': v} for k, v in self.dimensions.items()],
        }
        if self.actions:
            request['ActionsEnabled'] = True
            request['AlarmActions'] = list(self.actions)
        return request


@dataclass
class DashboardWidget:
    """One dashboard widget; ``properties`` is passed through unchanged."""
    type: str
    properties: Dict[str, Any]
    width: int = 12
    height: int = 6


def build_dashboard(widgets: List[DashboardWidget]) -> Dict[str, Any]:
    """Lay widgets out left to right in rows 24 units wide, in list order."""
    body = {"widgets": []}
    x = y = row_height = 0
    for widget in widgets:
        if x + widget.width > 24:
            x = 0
            y += row_height
            row_height = 0
        body["widgets"].append({
            "type": widget.type,
            "x": x,
            "y": y,
            "width": widget.width,
            "height": widget.height,
            "properties": widget.properties,
        })
        x += widget.width
        row_height = max(row_height, widget.height)
    return body


def default_alarms(app_name: str, instance_id: str, topic_arn: Optional[str] = None) -> List[AlarmDefinition]:
    """High CPU and failed status check alarms for the web instance."""
    actions = [topic_arn] if topic_arn else []
    prefix = app_name.title().replace('_', '-')
    return [
        AlarmDefinition(
            name=f"{prefix}-HighCPU",
            description="Alert when CPU exceeds 80%",
            metric_name="CPUUtilization",
            namespace="AWS/EC2",
            statistic="Average",
            period=300,
            threshold=80,
            comparison_operator="GreaterThanThreshold",
            evaluation_periods=2,
            dimensions={"InstanceId": instance_id},
            actions=actions,
        ),
        AlarmDefinition(
            name=f"{prefix}-StatusCheck",
            description="Alert when instance fails status check",
            metric_name="StatusCheckFailed",
            namespace="AWS/EC2",
            statistic="Maximum",
            period=300,
            threshold=1,
            comparison_operator="GreaterThanOrEqualToThreshold",
            evaluation_periods=2,
            dimensions={"InstanceId": instance_id},
            actions=actions,
        ),
    ]


def default_dashboard(instance_id: str, region: str, namespace: str, health_metric: str) -> List[DashboardWidget]:
    return [
        DashboardWidget(type="metric", properties={
            "metrics": [["AWS/EC2", "CPUUtilization", "InstanceId", instance_id]],
            "view": "timeSeries",
            "stacked": False,
            "region": region,
            "title": "EC2 CPU Utilization",
            "period": 300,
        }),
        DashboardWidget(type="metric", properties={
            "metrics": [[namespace, health_metric]],
            "view": "timeSeries",
            "stacked": False,
            "region": region,
            "title": "Application Health",
            "period": 300,
        }),
    ]


class CloudWatchMonitoringProvider:
    """Publishes alarms, dashboards and metric values to CloudWatch."""

    def __init__(self, clients: AWSClientManager):
        self.cloudwatch = clients.cloudwatch()

    def put_alarm(self, alarm: AlarmDefinition) -> None:
        try:
            self.cloudwatch.put_metric_alarm(**alarm.to_request())
        except ClientError as e:
            logger.error(f"Failed to create alarm {alarm.name}: {e}")
            raise
        logger.info(f"Created alarm: {alarm.name}")

    def put_dashboard(self, name: str, widgets: List[DashboardWidget]) -> None:
        try:
            self.cloudwatch.put_dashboard(
                DashboardName=name,
                DashboardBody=json.dumps(build_dashboard(widgets)),
            )
        except ClientError as e:
            logger.error(f"Failed to create dashboard {name}: {e}")
            raise
        logger.info(f"Created dashboard: {name}")

    def put_metric(self, namespace: str, name: str, value: float, unit: str = "Count",
                   dimensions: Optional[Dict[str, str]] = None) -> None:
        datum = {
            'MetricName': name,
            'Value': value,
            'Unit': unit,
            'Timestamp': datetime.now(timezone.utc),
        }
        if dimensions:
            datum['Dimensions'] = [{'Name': k, 'Value': v} for k, v in dimensions.items()]
        try:
            self.cloudwatch.put_metric_data(Namespace=namespace, MetricData=[datum])
        except ClientError as e:
            logger.error(f"Failed to publish {namespace}/{name}: {e}")
            raise
        logger.debug(f"Published {namespace}/{name}={value}")
