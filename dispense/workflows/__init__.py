from .liveness_workflow import MachineLivenessWorkflow
