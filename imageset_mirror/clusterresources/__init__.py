from .generator import ClusterResourcesGenerator, build_idms

__all__ = ["ClusterResourcesGenerator", "build_idms"]
