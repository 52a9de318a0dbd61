"""
Top-level package for the serverless Service Catalog compiler.

The provisioned-product compiler lives under `serverless_sc.provisioning`; the
`serverless-sc` console script is wired to `serverless_sc.provisioning.cli`.
"""

__all__: list[str] = []
