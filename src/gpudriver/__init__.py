"""Kubernetes controller installing NVIDIA GPU drivers on node pools."""
