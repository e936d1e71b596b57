"""Kubernetes resource templates."""

from kubernetes import client

from . import crd

APP_LABEL = {"app": "noobaa"}


def core_app_name(name):
    return f"{name}-core"


def service_mgmt_name(name):
    return f"{name}-mgmt"


def service_s3_name(name):
    # TODO: handle collisions when two systems share a namespace
    return "s3"


def secret_server_name(name):
    return f"{name}-server"


def secret_operator_name(name):
    return f"{name}-operator"


def secret_admin_name(name):
    return f"{name}-admin"


def create_noobaa_manifest(name, namespace):
    """Create the baseline NooBaa custom resource body."""
    return {
        "apiVersion": crd.API_VERSION,
        "kind": crd.KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {},
        "status": {},
    }


def _secret_env(env_name, secret_name, key):
    return client.V1EnvVar(
        name=env_name,
        value_from=client.V1EnvVarSource(
            secret_key_ref=client.V1SecretKeySelector(name=secret_name, key=key)
        ),
    )


def _claim_template(claim_name, size):
    return client.V1PersistentVolumeClaim(
        metadata=client.V1ObjectMeta(name=claim_name, labels=dict(APP_LABEL)),
        spec=client.V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            resources=client.V1VolumeResourceRequirements(requests={"storage": size}),
        ),
    )


def create_core_statefulset_manifest(name, namespace):
    """Create the core StatefulSet manifest.

    Container images hold placeholders that are replaced when the
    desired state is applied.
    """
    server_secret = secret_server_name(name)
    return client.V1StatefulSet(
        api_version="apps/v1",
        kind="StatefulSet",
        metadata=client.V1ObjectMeta(
            name=core_app_name(name),
            namespace=namespace,
            labels=dict(APP_LABEL),
        ),
        spec=client.V1StatefulSetSpec(
            replicas=1,
            service_name=service_mgmt_name(name),
            selector=client.V1LabelSelector(match_labels={"noobaa-core": "noobaa"}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(
                    labels={
                        "app": "noobaa",
                        "noobaa-core": "noobaa",
                        "noobaa-mgmt": "noobaa",
                        "noobaa-s3": "noobaa",
                    },
                ),
                spec=client.V1PodSpec(
                    service_account_name="default",
                    termination_grace_period_seconds=60,
                    init_containers=[
                        client.V1Container(
                            name="init-mongo",
                            image=crd.NOOBAA_IMAGE_PLACEHOLDER,
                            command=["/noobaa_init_files/noobaa_init.sh", "init_mongo"],
                            volume_mounts=[
                                client.V1VolumeMount(name="mongo-datadir", mount_path="/data"),
                            ],
                        )
                    ],
                    containers=[
                        client.V1Container(
                            name="core",
                            image=crd.NOOBAA_IMAGE_PLACEHOLDER,
                            ports=[
                                client.V1ContainerPort(container_port=6001),
                                client.V1ContainerPort(container_port=6443),
                                client.V1ContainerPort(container_port=8080),
                                client.V1ContainerPort(container_port=8443),
                                client.V1ContainerPort(container_port=60100),
                            ],
                            env=[
                                client.V1EnvVar(name="CONTAINER_PLATFORM", value="KUBERNETES"),
                                client.V1EnvVar(name="MONGODB_URL", value="mongodb://127.0.0.1:27017/nbcore"),
                                _secret_env("JWT_SECRET", server_secret, "jwt"),
                                _secret_env("SERVER_SECRET", server_secret, "server_secret"),
                            ],
                            resources=client.V1ResourceRequirements(
                                requests={"cpu": "1", "memory": "4Gi"},
                                limits={"cpu": "1", "memory": "4Gi"},
                            ),
                            volume_mounts=[
                                client.V1VolumeMount(name="logdir", mount_path="/log"),
                            ],
                        ),
                        client.V1Container(
                            name="mongodb",
                            image=crd.MONGO_IMAGE_PLACEHOLDER,
                            command=[
                                "bash",
                                "-c",
                                "/opt/rh/rh-mongodb36/root/usr/bin/mongod --port 27017 "
                                "--bind_ip 127.0.0.1 --dbpath /data/mongo/cluster/shard1",
                            ],
                            resources=client.V1ResourceRequirements(
                                requests={"cpu": "500m", "memory": "1Gi"},
                                limits={"cpu": "500m", "memory": "1Gi"},
                            ),
                            volume_mounts=[
                                client.V1VolumeMount(name="mongo-datadir", mount_path="/data"),
                            ],
                        ),
                    ],
                ),
            ),
            volume_claim_templates=[
                _claim_template("logdir", "10Gi"),
                _claim_template("mongo-datadir", "50Gi"),
            ],
        ),
    )


def _service_manifest(service_name, namespace, selector_label, ports):
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(
            name=service_name,
            namespace=namespace,
            labels=dict(APP_LABEL),
        ),
        spec=client.V1ServiceSpec(
            type="LoadBalancer",
            selector={selector_label: "noobaa"},
            ports=ports,
        ),
    )


def create_service_mgmt_manifest(name, namespace):
    """Create the management Service manifest."""
    return _service_manifest(
        service_mgmt_name(name),
        namespace,
        "noobaa-mgmt",
        [
            client.V1ServicePort(name="mgmt", port=8080, target_port=8080),
            client.V1ServicePort(name=crd.MGMT_HTTPS_PORT, port=8443, target_port=8443),
        ],
    )


def create_service_s3_manifest(name, namespace):
    """Create the S3 Service manifest."""
    return _service_manifest(
        service_s3_name(name),
        namespace,
        "noobaa-s3",
        [
            client.V1ServicePort(name="s3", port=80, target_port=6001),
            client.V1ServicePort(name=crd.S3_HTTPS_PORT, port=443, target_port=6443),
        ],
    )


def create_secret_manifest(secret_name, namespace, string_data=None):
    """Create an Opaque secret manifest."""
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=client.V1ObjectMeta(
            name=secret_name,
            namespace=namespace,
            labels=dict(APP_LABEL),
        ),
        type="Opaque",
        data={},
        string_data=dict(string_data or {}),
    )


README_TEMPLATE = """

	Welcome to NooBaa!
	-----------------

	Lets get started:

	1. Connect to Management console:

		Read your mgmt console login information (email & password) from secret: "{admin_name}".

			kubectl get secret {admin_name} -n {admin_namespace} -o json | jq '.data|map_values(@base64d)'

		Open the management console service - take External IP/DNS or Node Port or use port forwarding:

			kubectl port-forward -n {mgmt_namespace} service/{mgmt_name} 11443:8443 &
			open https://localhost:11443

	2. Test S3 client:

		kubectl port-forward -n {s3_namespace} service/{s3_name} 10443:443 &
		NOOBAA_ACCESS_KEY=$(kubectl get secret {admin_name} -n {admin_namespace} -o json | jq -r '.data.AWS_ACCESS_KEY_ID|@base64d')
		NOOBAA_SECRET_KEY=$(kubectl get secret {admin_name} -n {admin_namespace} -o json | jq -r '.data.AWS_SECRET_ACCESS_KEY|@base64d')
		alias s3='AWS_ACCESS_KEY_ID=$NOOBAA_ACCESS_KEY AWS_SECRET_ACCESS_KEY=$NOOBAA_SECRET_KEY aws --endpoint https://localhost:10443 --no-verify-ssl s3'
		s3 ls

"""


def render_readme(secret_admin, service_mgmt, service_s3):
    """Render the usage instructions stored in the NooBaa status."""
    return README_TEMPLATE.format(
        admin_name=secret_admin.metadata.name,
        admin_namespace=secret_admin.metadata.namespace,
        mgmt_name=service_mgmt.metadata.name,
        mgmt_namespace=service_mgmt.metadata.namespace,
        s3_name=service_s3.metadata.name,
        s3_namespace=service_s3.metadata.namespace,
    )
