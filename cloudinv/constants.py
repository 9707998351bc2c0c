"""
Constants for CloudInv.

This module defines the provider names, resource kinds, view keys and default
values shared by the adapters, the scheduler and the HTTP API so that no
component has to guess a resource's kind from the shape of its data.
"""

# =============================================================================
# Byte/Size Conversion Constants
# =============================================================================

BYTES_PER_KB = 1024
BYTES_PER_MB = 1024 ** 2
BYTES_PER_GB = 1024 ** 3
BYTES_PER_TB = 1024 ** 4

# =============================================================================
# Time Constants
# =============================================================================

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
HOURS_PER_MONTH = 24 * 30

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_PARALLEL_WORKERS = 4
DEFAULT_ADAPTER_TIMEOUT = 60.0  # seconds, per adapter
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 8080
DEFAULT_K8S_PAGE_SIZE = 500

# =============================================================================
# Providers
# =============================================================================

PROVIDER_AWS = "aws"
PROVIDER_AZURE = "azure"
PROVIDER_GCP = "gcp"
PROVIDER_KUBERNETES = "kubernetes"
PROVIDER_OPENSHIFT = "openshift"
PROVIDER_DOCKER = "docker"
PROVIDER_VAULT = "vault"
PROVIDER_TERRAFORM = "terraform"

ALL_PROVIDERS = (
    PROVIDER_AWS,
    PROVIDER_AZURE,
    PROVIDER_GCP,
    PROVIDER_KUBERNETES,
    PROVIDER_OPENSHIFT,
    PROVIDER_DOCKER,
    PROVIDER_VAULT,
    PROVIDER_TERRAFORM,
)

# Providers that have price tables
PRICED_PROVIDERS = (PROVIDER_AWS, PROVIDER_AZURE, PROVIDER_GCP)

# =============================================================================
# Source Status
# =============================================================================

STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"
STATUS_ERROR = "error"

# =============================================================================
# AWS Resource Kinds
# =============================================================================

KIND_EC2_INSTANCE = "EC2Instance"
KIND_EBS_VOLUME = "EBSVolume"
KIND_EBS_SNAPSHOT = "EBSSnapshot"
KIND_RDS_INSTANCE = "RDSInstance"
KIND_RDS_SNAPSHOT = "RDSSnapshot"
KIND_RDS_CLUSTER_SNAPSHOT = "RDSClusterSnapshot"
KIND_S3_BUCKET = "S3Bucket"
KIND_DYNAMODB_TABLE = "DynamoDBTable"
KIND_VPC = "VPC"
KIND_LAMBDA_FUNCTION = "LambdaFunction"
KIND_EFS_FILESYSTEM = "EFSFileSystem"

# =============================================================================
# Azure Resource Kinds
# =============================================================================

KIND_AZURE_RESOURCE_GROUP = "AzureResourceGroup"
KIND_AZURE_VM = "AzureVM"
KIND_AZURE_VMSS = "AzureVMSS"
KIND_AZURE_DISK = "AzureDisk"
KIND_AZURE_DISK_SNAPSHOT = "AzureDiskSnapshot"
KIND_AZURE_STORAGE_ACCOUNT = "AzureStorageAccount"
KIND_AZURE_BLOB_CONTAINER = "AzureBlobContainer"
KIND_AZURE_AKS_CLUSTER = "AzureAKSCluster"
KIND_AZURE_VNET = "AzureVirtualNetwork"
KIND_AZURE_SQL_DATABASE = "AzureSQLDatabase"
KIND_AZURE_COSMOSDB = "AzureCosmosDB"

# =============================================================================
# GCP Resource Kinds
# =============================================================================

KIND_GCP_COMPUTE_INSTANCE = "GCPComputeInstance"
KIND_GCP_DISK = "GCPDisk"
KIND_GCP_DISK_SNAPSHOT = "GCPDiskSnapshot"
KIND_GCS_BUCKET = "GCSBucket"
KIND_CLOUD_SQL_INSTANCE = "CloudSQLInstance"
KIND_CLOUD_RUN_SERVICE = "CloudRunService"
KIND_CLOUD_FUNCTION = "CloudFunction"

# =============================================================================
# Kubernetes / OpenShift Resource Kinds
# =============================================================================

KIND_K8S_NODE = "K8sNode"
KIND_K8S_NAMESPACE = "K8sNamespace"
KIND_K8S_POD = "K8sPod"
KIND_K8S_DEPLOYMENT = "K8sDeployment"
KIND_K8S_STATEFULSET = "K8sStatefulSet"
KIND_K8S_SERVICE = "K8sService"
KIND_K8S_PV = "K8sPersistentVolume"
KIND_K8S_PVC = "K8sPersistentVolumeClaim"
KIND_K8S_STORAGE_CLASS = "K8sStorageClass"
KIND_K8S_VOLUME_SNAPSHOT_CLASS = "K8sVolumeSnapshotClass"
KIND_K8S_VOLUME_SNAPSHOT = "K8sVolumeSnapshot"

KIND_OPENSHIFT_PROJECT = "OpenShiftProject"
KIND_OPENSHIFT_ROUTE = "OpenShiftRoute"
KIND_OPENSHIFT_CLUSTER_OPERATOR = "OpenShiftClusterOperator"
KIND_OPENSHIFT_CLUSTER_VERSION = "OpenShiftClusterVersion"
KIND_OPENSHIFT_INFRASTRUCTURE = "OpenShiftInfrastructure"
KIND_OPENSHIFT_BUILD_CONFIG = "OpenShiftBuildConfig"
KIND_OPENSHIFT_IMAGE_STREAM = "OpenShiftImageStream"
KIND_OPENSHIFT_SCC = "OpenShiftSecurityContextConstraints"
KIND_OPENSHIFT_INGRESS_CONTROLLER = "OpenShiftIngressController"
KIND_OPENSHIFT_MACHINE_CONFIG_POOL = "OpenShiftMachineConfigPool"
KIND_OLM_SUBSCRIPTION = "OLMSubscription"
KIND_OLM_INSTALL_PLAN = "OLMInstallPlan"
KIND_OLM_OPERATOR_GROUP = "OLMOperatorGroup"

# =============================================================================
# Docker Resource Kinds
# =============================================================================

KIND_DOCKER_CONTAINER = "DockerContainer"
KIND_DOCKER_IMAGE = "DockerImage"
KIND_DOCKER_VOLUME = "DockerVolume"
KIND_DOCKER_NETWORK = "DockerNetwork"

# =============================================================================
# Vault Resource Kinds
# =============================================================================

KIND_VAULT_SERVER = "VaultServer"
KIND_VAULT_AUTH_METHOD = "VaultAuthMethod"
KIND_VAULT_SECRET_ENGINE = "VaultSecretEngine"
KIND_VAULT_POLICY = "VaultPolicy"
KIND_VAULT_AUDIT_DEVICE = "VaultAuditDevice"

# =============================================================================
# Terraform Resource Kinds
# =============================================================================

KIND_TERRAFORM_RESOURCE = "TerraformResource"
KIND_TERRAFORM_OUTPUT = "TerraformOutput"
KIND_TERRAFORM_PROVIDER = "TerraformProvider"

# Kinds that represent a backup/snapshot artifact
SNAPSHOT_KINDS = frozenset({
    KIND_EBS_SNAPSHOT,
    KIND_RDS_SNAPSHOT,
    KIND_RDS_CLUSTER_SNAPSHOT,
    KIND_AZURE_DISK_SNAPSHOT,
    KIND_GCP_DISK_SNAPSHOT,
    KIND_K8S_VOLUME_SNAPSHOT,
})

# =============================================================================
# View Keys
# =============================================================================

# Top-level array name each kind is rendered under in the data and snapshot
# views. Kubernetes kinds are shared by the openshift provider.
VIEW_KEYS = {
    # AWS
    KIND_EC2_INSTANCE: "EC2Instances",
    KIND_EBS_VOLUME: "EBSVolumes",
    KIND_EBS_SNAPSHOT: "EBSSnapshots",
    KIND_RDS_INSTANCE: "RDSInstances",
    KIND_RDS_SNAPSHOT: "RDSSnapshots",
    KIND_RDS_CLUSTER_SNAPSHOT: "RDSClusterSnapshots",
    KIND_S3_BUCKET: "S3Buckets",
    KIND_DYNAMODB_TABLE: "DynamoDBTables",
    KIND_VPC: "VPCs",
    KIND_LAMBDA_FUNCTION: "LambdaFunctions",
    KIND_EFS_FILESYSTEM: "EFSFileSystems",
    # Azure
    KIND_AZURE_RESOURCE_GROUP: "AzureResourceGroups",
    KIND_AZURE_VM: "AzureVMs",
    KIND_AZURE_VMSS: "AzureVMSS",
    KIND_AZURE_DISK: "AzureDisks",
    KIND_AZURE_DISK_SNAPSHOT: "DiskSnapshots",
    KIND_AZURE_STORAGE_ACCOUNT: "AzureStorageAccounts",
    KIND_AZURE_BLOB_CONTAINER: "AzureBlobContainers",
    KIND_AZURE_AKS_CLUSTER: "AzureAKSClusters",
    KIND_AZURE_VNET: "AzureVirtualNetworks",
    KIND_AZURE_SQL_DATABASE: "AzureSQLDatabases",
    KIND_AZURE_COSMOSDB: "AzureCosmosDBs",
    # GCP
    KIND_GCP_COMPUTE_INSTANCE: "ComputeInstances",
    KIND_GCP_DISK: "PersistentDisks",
    KIND_GCP_DISK_SNAPSHOT: "DiskSnapshots",
    KIND_GCS_BUCKET: "GCSBuckets",
    KIND_CLOUD_SQL_INSTANCE: "CloudSQLInstances",
    KIND_CLOUD_RUN_SERVICE: "CloudRunServices",
    KIND_CLOUD_FUNCTION: "CloudFunctions",
    # Kubernetes
    KIND_K8S_NODE: "Nodes",
    KIND_K8S_NAMESPACE: "Namespaces",
    KIND_K8S_POD: "Pods",
    KIND_K8S_DEPLOYMENT: "Deployments",
    KIND_K8S_STATEFULSET: "StatefulSets",
    KIND_K8S_SERVICE: "Services",
    KIND_K8S_PV: "PersistentVolumes",
    KIND_K8S_PVC: "PersistentVolumeClaims",
    KIND_K8S_STORAGE_CLASS: "StorageClasses",
    KIND_K8S_VOLUME_SNAPSHOT_CLASS: "VolumeSnapshotClasses",
    KIND_K8S_VOLUME_SNAPSHOT: "VolumeSnapshots",
    # OpenShift
    KIND_OPENSHIFT_PROJECT: "Projects",
    KIND_OPENSHIFT_ROUTE: "Routes",
    KIND_OPENSHIFT_CLUSTER_OPERATOR: "ClusterOperators",
    KIND_OPENSHIFT_CLUSTER_VERSION: "ClusterVersions",
    KIND_OPENSHIFT_INFRASTRUCTURE: "Infrastructures",
    KIND_OPENSHIFT_BUILD_CONFIG: "BuildConfigs",
    KIND_OPENSHIFT_IMAGE_STREAM: "ImageStreams",
    KIND_OPENSHIFT_SCC: "SecurityContextConstraints",
    KIND_OPENSHIFT_INGRESS_CONTROLLER: "IngressControllers",
    KIND_OPENSHIFT_MACHINE_CONFIG_POOL: "MachineConfigPools",
    KIND_OLM_SUBSCRIPTION: "Subscriptions",
    KIND_OLM_INSTALL_PLAN: "InstallPlans",
    KIND_OLM_OPERATOR_GROUP: "OperatorGroups",
    # Docker
    KIND_DOCKER_CONTAINER: "containers",
    KIND_DOCKER_IMAGE: "images",
    KIND_DOCKER_VOLUME: "volumes",
    KIND_DOCKER_NETWORK: "networks",
    # Vault
    KIND_VAULT_SERVER: "serverInfo",
    KIND_VAULT_AUTH_METHOD: "authMethods",
    KIND_VAULT_SECRET_ENGINE: "secretEngines",
    KIND_VAULT_POLICY: "policies",
    KIND_VAULT_AUDIT_DEVICE: "auditDevices",
    # Terraform
    KIND_TERRAFORM_RESOURCE: "Resources",
    KIND_TERRAFORM_OUTPUT: "Outputs",
    KIND_TERRAFORM_PROVIDER: "Providers",
}

# Kinds rendered as a single object rather than an array
SINGLETON_VIEW_KINDS = frozenset({KIND_VAULT_SERVER})

# =============================================================================
# Credential Descriptor Types
# =============================================================================

CREDENTIAL_TYPES = {
    PROVIDER_AWS: {
        "profile": (),
        "credentials": ("accessKeyId", "secretAccessKey"),
    },
    PROVIDER_AZURE: {
        "cli": (),
        "service_principal": ("tenantId", "clientId", "clientSecret"),
    },
    PROVIDER_GCP: {
        "gcloud": (),
        "service_account": (),  # keyFile or keyJson, checked separately
    },
    PROVIDER_KUBERNETES: {
        "kubeconfig": (),
    },
    PROVIDER_OPENSHIFT: {
        "kubeconfig": (),
    },
    PROVIDER_DOCKER: {
        "host": (),
    },
    PROVIDER_VAULT: {
        "token": ("server", "token"),
        "userpass": ("server", "username", "password"),
    },
    PROVIDER_TERRAFORM: {
        "local": ("path",),
        "s3": ("bucket", "key"),
        "azure_blob": ("storageAccount", "container", "blob"),
        "gcs": ("bucket", "object"),
    },
}

# Descriptor type used when a connect request omits "type"
DEFAULT_CREDENTIAL_TYPES = {
    PROVIDER_AWS: "profile",
    PROVIDER_AZURE: "cli",
    PROVIDER_GCP: "gcloud",
    PROVIDER_KUBERNETES: "kubeconfig",
    PROVIDER_OPENSHIFT: "kubeconfig",
    PROVIDER_DOCKER: "host",
    PROVIDER_VAULT: "token",
    PROVIDER_TERRAFORM: "local",
}

# Descriptor fields masked whenever a descriptor is logged or returned
SECRET_FIELDS = frozenset({
    "secretAccessKey", "sessionToken", "clientSecret", "keyJson",
    "token", "password",
})

# =============================================================================
# Cost Constants
# =============================================================================

CURRENCY_USD = "USD"
PRICING_BASIS_GB_MONTH = "price-per-GB-month"
PRICING_BASIS_HOUR = "price-per-hour"

COST_STATUS_OK = "ok"
COST_STATUS_NO_DATA = "no_data"
COST_STATUS_ERROR = "error"


def bytes_to_gb(bytes_value: int) -> float:
    """Convert bytes to GB (binary, 1024^3)."""
    if not bytes_value:
        return 0.0
    return bytes_value / BYTES_PER_GB
