"""AWS discovery tables.

Service mappings, relationship rules and monthly cost estimates
(us-east-1 on-demand, USD) that drive the AWS discovery adapter.
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from infragraph.discovery.base import ResourceMapping
from infragraph.discovery.relationships import RelationshipRule


@dataclass(frozen=True)
class AwsResourceMapping(ResourceMapping):
    """Resource mapping with an optional per-item describe call.

    Attributes:
        item_key: Key used to wrap list operations that return bare strings
        detail_operation: Operation called once per listed item
        detail_param: Parameter name receiving the item id
        detail_path: Field path from the detail response to the merged value
        detail_args: Extra constant arguments of the detail call
        detail_key: Store the detail value under this key instead of merging it
        json_fields: Top-level fields holding JSON documents encoded as strings
    """

    item_key: Optional[str] = None
    detail_operation: Optional[str] = None
    detail_param: Optional[str] = None
    detail_path: Optional[str] = None
    detail_args: Tuple[Tuple[str, Any], ...] = ()
    detail_key: Optional[str] = None
    json_fields: Tuple[str, ...] = ()

    def __post_init__(self):
        super().__post_init__()
        self._validate_paths("detail_path")


AWS_SERVICE_MAPPINGS = [
    AwsResourceMapping("compute", "ec2", "describe_instances", "Reservations[].Instances[]",
                       "InstanceId", name_field="Tags[Name]", type_field="InstanceType",
                       status_field="State.Name"),
    AwsResourceMapping("vpc", "ec2", "describe_vpcs", "Vpcs", "VpcId",
                       name_field="Tags[Name]", status_field="State"),
    AwsResourceMapping("subnet", "ec2", "describe_subnets", "Subnets", "SubnetId",
                       name_field="Tags[Name]", arn_field="SubnetArn", status_field="State"),
    AwsResourceMapping("security-group", "ec2", "describe_security_groups", "SecurityGroups",
                       "GroupId", name_field="GroupName"),
    AwsResourceMapping("storage", "ec2", "describe_volumes", "Volumes", "VolumeId",
                       name_field="Tags[Name]", type_field="VolumeType", status_field="State"),
    AwsResourceMapping("internet-gateway", "ec2", "describe_internet_gateways", "InternetGateways",
                       "InternetGatewayId", name_field="Tags[Name]"),
    AwsResourceMapping("nat-gateway", "ec2", "describe_nat_gateways", "NatGateways", "NatGatewayId",
                       name_field="Tags[Name]", status_field="State"),
    AwsResourceMapping("route-table", "ec2", "describe_route_tables", "RouteTables", "RouteTableId",
                       name_field="Tags[Name]"),
    AwsResourceMapping("database", "rds", "describe_db_instances", "DBInstances",
                       "DBInstanceIdentifier", name_field="DBInstanceIdentifier",
                       arn_field="DBInstanceArn", type_field="DBInstanceClass",
                       status_field="DBInstanceStatus"),
    AwsResourceMapping("database", "dynamodb", "list_tables", "TableNames", "TableName",
                       name_field="TableName", item_key="TableName"),
    AwsResourceMapping("serverless-function", "lambda", "list_functions", "Functions",
                       "FunctionName", name_field="FunctionName", arn_field="FunctionArn",
                       status_field="State"),
    AwsResourceMapping("storage", "s3", "list_buckets", "Buckets", "Name",
                       name_field="Name", regional=False,
                       detail_operation="get_bucket_notification_configuration", detail_param="Bucket",
                       detail_key="NotificationConfiguration"),
    AwsResourceMapping("load-balancer", "elbv2", "describe_load_balancers", "LoadBalancers",
                       "LoadBalancerArn", name_field="LoadBalancerName", arn_field="LoadBalancerArn",
                       status_field="State.Code"),
    AwsResourceMapping("queue", "sqs", "list_queues", "QueueUrls", "QueueUrl",
                       arn_field="QueueArn", item_key="QueueUrl",
                       detail_operation="get_queue_attributes", detail_param="QueueUrl",
                       detail_path="Attributes", detail_args=(("AttributeNames", ("All",)),),
                       json_fields=("RedrivePolicy",)),
    AwsResourceMapping("topic", "sns", "list_topics", "Topics", "TopicArn", arn_field="TopicArn",
                       detail_operation="list_subscriptions_by_topic", detail_param="TopicArn",
                       detail_path="Subscriptions", detail_key="Subscriptions"),
    AwsResourceMapping("cache", "elasticache", "describe_cache_clusters", "CacheClusters",
                       "CacheClusterId", name_field="CacheClusterId", arn_field="ARN",
                       type_field="CacheNodeType", status_field="CacheClusterStatus"),
    AwsResourceMapping("cluster", "eks", "list_clusters", "clusters", "name", name_field="name",
                       arn_field="arn", status_field="status", item_key="name",
                       detail_operation="describe_cluster", detail_param="name",
                       detail_path="cluster"),
    AwsResourceMapping("api-gateway", "apigateway", "get_rest_apis", "items", "id", name_field="name",
                       detail_operation="get_resources", detail_param="restApiId",
                       detail_path="items", detail_args=(("embed", ("methods",)), ("limit", 500)),
                       detail_key="Resources"),
    AwsResourceMapping("api-gateway", "apigatewayv2", "get_apis", "Items", "ApiId", name_field="Name",
                       detail_operation="get_integrations", detail_param="ApiId",
                       detail_path="Items", detail_key="Resources"),
    AwsResourceMapping("cdn", "cloudfront", "list_distributions", "DistributionList.Items[]", "Id",
                       name_field="DomainName", arn_field="ARN", status_field="Status",
                       regional=False),
    AwsResourceMapping("dns", "route53", "list_hosted_zones", "HostedZones", "Id",
                       name_field="Name", regional=False),
    AwsResourceMapping("iam-role", "iam", "list_roles", "Roles", "RoleName",
                       name_field="RoleName", arn_field="Arn", regional=False),
    AwsResourceMapping("instance-profile", "iam", "list_instance_profiles", "InstanceProfiles",
                       "InstanceProfileName", name_field="InstanceProfileName", arn_field="Arn",
                       regional=False),
    AwsResourceMapping("secret", "secretsmanager", "list_secrets", "SecretList", "Name",
                       name_field="Name", arn_field="ARN"),
    AwsResourceMapping("ml-endpoint", "sagemaker", "list_endpoints", "Endpoints", "EndpointName",
                       name_field="EndpointName", arn_field="EndpointArn",
                       status_field="EndpointStatus"),
    AwsResourceMapping("ml-notebook", "sagemaker", "list_notebook_instances", "NotebookInstances",
                       "NotebookInstanceName", name_field="NotebookInstanceName",
                       arn_field="NotebookInstanceArn", type_field="InstanceType",
                       status_field="NotebookInstanceStatus"),
]


def _rule(source, field, relationship, target, is_array=False, bidirectional=False):
    return RelationshipRule(
        source_resource_type=source,
        field=field,
        relationship_type=relationship,
        is_array=is_array,
        bidirectional=bidirectional,
        target_resource_type=target,
    )


AWS_RELATIONSHIP_RULES = [
    _rule("compute", "VpcId", "runs-in", "vpc"),
    _rule("compute", "SubnetId", "runs-in", "subnet"),
    _rule("compute", "SecurityGroups[].GroupId", "secured-by", "security-group", is_array=True),
    _rule("compute", "IamInstanceProfile.Arn", "uses", "instance-profile"),
    _rule("compute", "BlockDeviceMappings[].Ebs.VolumeId", "attached-to", "storage",
          is_array=True, bidirectional=True),

    _rule("instance-profile", "Roles[].RoleName", "uses", "iam-role", is_array=True),

    _rule("subnet", "VpcId", "runs-in", "vpc"),
    _rule("security-group", "VpcId", "runs-in", "vpc"),
    _rule("route-table", "VpcId", "runs-in", "vpc"),
    _rule("route-table", "Associations[].SubnetId", "routes-to", "subnet", is_array=True),
    _rule("internet-gateway", "Attachments[].VpcId", "attached-to", "vpc",
          is_array=True, bidirectional=True),
    _rule("nat-gateway", "VpcId", "runs-in", "vpc"),
    _rule("nat-gateway", "SubnetId", "runs-in", "subnet"),

    _rule("database", "DBSubnetGroup.Subnets[].SubnetIdentifier", "runs-in", "subnet", is_array=True),
    _rule("database", "VpcSecurityGroups[].VpcSecurityGroupId", "secured-by", "security-group",
          is_array=True),
    _rule("database", "ReadReplicaSourceDBInstanceIdentifier", "replicates", "database"),

    _rule("serverless-function", "VpcConfig.SubnetIds[]", "runs-in", "subnet", is_array=True),
    _rule("serverless-function", "VpcConfig.SecurityGroupIds[]", "secured-by", "security-group",
          is_array=True),
    _rule("serverless-function", "Role", "uses", "iam-role"),
    _rule("serverless-function", "DeadLetterConfig.TargetArn", "publishes-to", "queue"),

    _rule("load-balancer", "VpcId", "runs-in", "vpc"),
    _rule("load-balancer", "SecurityGroups[]", "secured-by", "security-group", is_array=True),
    _rule("load-balancer", "AvailabilityZones[].SubnetId", "runs-in", "subnet", is_array=True),

    _rule("storage", "NotificationConfiguration.LambdaFunctionConfigurations[].LambdaFunctionArn",
          "triggers", "serverless-function", is_array=True),
    _rule("storage", "NotificationConfiguration.QueueConfigurations[].QueueArn", "publishes-to", "queue",
          is_array=True),
    _rule("storage", "NotificationConfiguration.TopicConfigurations[].TopicArn", "publishes-to", "topic",
          is_array=True),

    _rule("queue", "RedrivePolicy.deadLetterTargetArn", "publishes-to", "queue"),
    _rule("topic", "Subscriptions[].Endpoint", "publishes-to", "queue", is_array=True),
    _rule("topic", "Subscriptions[].Endpoint", "triggers", "serverless-function", is_array=True),

    _rule("api-gateway", "Integrations[].Uri", "routes-to", "serverless-function", is_array=True),

    _rule("cdn", "Origins.Items[].DomainName", "routes-to", "storage", is_array=True),
    _rule("cdn", "Origins.Items[].DomainName", "routes-to", "load-balancer", is_array=True),

    _rule("cache", "SecurityGroups[].SecurityGroupId", "secured-by", "security-group", is_array=True),

    _rule("cluster", "resourcesVpcConfig.subnetIds[]", "runs-in", "subnet", is_array=True),
    _rule("cluster", "resourcesVpcConfig.securityGroupIds[]", "secured-by", "security-group",
          is_array=True),
    _rule("cluster", "resourcesVpcConfig.vpcId", "runs-in", "vpc"),
    _rule("cluster", "roleArn", "uses", "iam-role"),
]


# EC2 instance type -> monthly USD
EC2_COSTS = {
    "t3.nano": 3.80, "t3.micro": 7.59, "t3.small": 15.18, "t3.medium": 30.37,
    "t3.large": 60.74, "t3.xlarge": 121.47, "t3.2xlarge": 242.94,
    "t3a.micro": 6.86, "t3a.small": 13.72, "t3a.medium": 27.45, "t3a.large": 54.90,
    "t4g.micro": 6.13, "t4g.small": 12.26, "t4g.medium": 24.53, "t4g.large": 49.06,
    "m5.large": 70.08, "m5.xlarge": 140.16, "m5.2xlarge": 280.32, "m5.4xlarge": 560.64,
    "m6i.large": 69.35, "m6i.xlarge": 138.70, "m6i.2xlarge": 277.40,
    "m6g.large": 56.21, "m6g.xlarge": 112.42,
    "m7i.large": 72.82, "m7i.xlarge": 145.64,
    "c5.large": 62.05, "c5.xlarge": 124.10, "c5.2xlarge": 248.20, "c5.4xlarge": 496.40,
    "c6i.large": 61.32, "c6i.xlarge": 122.64, "c6g.large": 49.06, "c6g.xlarge": 98.11,
    "r5.large": 91.98, "r5.xlarge": 183.96, "r5.2xlarge": 367.92,
    "r6i.large": 91.25, "r6i.xlarge": 182.50, "r6g.large": 73.00, "r6g.xlarge": 146.00,
    "i3.large": 114.61, "i3.xlarge": 229.22,
    "p3.2xlarge": 2203.20, "p3.8xlarge": 8812.80, "p3.16xlarge": 17625.60,
    "p4d.24xlarge": 23689.44, "p5.48xlarge": 70560.00,
    "g4dn.xlarge": 381.24, "g4dn.2xlarge": 546.36, "g4dn.4xlarge": 876.00,
    "g5.xlarge": 766.44, "g5.2xlarge": 876.00, "g5.4xlarge": 1168.08, "g5.12xlarge": 4088.88,
    "g6.xlarge": 488.76, "g6.2xlarge": 586.87,
    "inf1.xlarge": 268.66, "inf2.xlarge": 546.72, "inf2.8xlarge": 1433.52,
    "trn1.2xlarge": 965.81, "trn1.32xlarge": 15453.00,
    "dl1.24xlarge": 9661.92,
}

# RDS instance class -> monthly USD
RDS_COSTS = {
    "db.t3.micro": 11.68, "db.t3.small": 23.36, "db.t3.medium": 46.72, "db.t3.large": 93.44,
    "db.t4g.micro": 11.83, "db.t4g.small": 23.65, "db.t4g.medium": 47.30,
    "db.r5.large": 124.10, "db.r5.xlarge": 248.20, "db.r5.2xlarge": 496.40,
    "db.r6g.large": 118.26, "db.r6g.xlarge": 236.52,
    "db.m5.large": 94.17, "db.m5.xlarge": 188.34, "db.m5.2xlarge": 376.68,
    "db.m6g.large": 86.58, "db.m6g.xlarge": 173.16,
}

# ElastiCache node type -> monthly USD
ELASTICACHE_COSTS = {
    "cache.t3.micro": 9.50, "cache.t3.small": 19.00, "cache.t3.medium": 38.00,
    "cache.t4g.micro": 9.50, "cache.t4g.small": 19.00, "cache.t4g.medium": 38.00,
    "cache.r5.large": 120.72, "cache.r5.xlarge": 241.44,
    "cache.r6g.large": 115.34, "cache.r6g.xlarge": 230.69,
    "cache.m5.large": 109.50, "cache.m6g.large": 104.40,
}

# EBS volume type -> USD per GB-month
EBS_GB_COSTS = {"gp2": 0.10, "gp3": 0.08, "io1": 0.125, "io2": 0.125, "st1": 0.045, "sc1": 0.015}

# (service, resource type) -> flat monthly estimate
STATIC_COSTS = {
    ("s3", "storage"): 0.02,
    ("sqs", "queue"): 0.01,
    ("sns", "topic"): 0.01,
    ("apigateway", "api-gateway"): 0.35,
    ("apigatewayv2", "api-gateway"): 0.35,
    ("cloudfront", "cdn"): 0.85,
    ("route53", "dns"): 0.50,
    ("secretsmanager", "secret"): 0.40,
    ("eks", "cluster"): 73.00,
    ("ec2", "nat-gateway"): 32.85,
    ("elbv2", "load-balancer"): 16.43,
}

AWS_CREATED_AT_FIELDS = (
    "LaunchTime", "CreateTime", "CreatedTime", "CreationDate", "CreateDate",
    "InstanceCreateTime", "CacheClusterCreateTime", "createdAt", "CreatedDate", "createdDate",
)

DEFAULT_REGIONS = [
    "us-east-1", "us-east-2", "us-west-1", "us-west-2",
    "eu-west-1", "eu-west-2", "eu-central-1",
    "ap-southeast-1", "ap-northeast-1",
]
