from cigraph import HttpHook, JobSpec, Pipeline, Refs, ReleaseBuildConfiguration
from cigraph.cluster import KubeClusterClient
from cigraph.defaults import from_config

# Runs examples/release.yaml against a cluster and posts step outcomes to a
# result-aggregation service. Requires a reachable API server and endpoint.

hook = HttpHook(
    base_url="http://localhost:8080",
    paths={
        "pipeline_start": "/hooks/pipeline/start",
        "pipeline_end": "/hooks/pipeline/end",
        "step_end": "/hooks/step/end",
        "error": "/hooks/error",
    },
)

configuration = ReleaseBuildConfiguration.load("examples/release.yaml")
job_spec = JobSpec(namespace="ci-op-example", refs=Refs.parse("openshift/installer@master"))
client = KubeClusterClient("https://api.example.com:6443")
requested, implicit = from_config(configuration, job_spec, client, promote=True)

PIPELINE = Pipeline(requested, job_spec, implicit=implicit, hook=hook)

if __name__ == "__main__":
    result = PIPELINE.execute()
    raise SystemExit(0 if result.succeeded else 1)
