"""
Services that resolve, download and load FHIR packages.

This package is responsible for:
* Resolving 'latest' and patch wildcard versions against the registries.
* Choosing download locations (registries, custom registry, build server).
* Downloading and installing package archives into the local cache.
* Merging loaded packages into DefinitionStores.
"""
