"""
References to the resource kinds as served by the store's API.

A declared object only knows its API version and kind (as in YAML files).
The API endpoints, however, are addressed by the plural names, and the URLs
differ for namespaced and cluster-scoped resources. This information
is retrieved from the API discovery (see :mod:`declsync._cogs.clients.scanning`)
and is kept in :class:`Resource`.
"""
import dataclasses
import urllib.parse
from typing import FrozenSet, List, Mapping, Optional

from declsync._cogs.structs import ids


@dataclasses.dataclass(frozen=True)
class Resource:
    """
    A reference to a very specific built-in or custom resource kind.

    It is used to form the API URLs. Generally, the API only needs
    an API group, an API version, and a plural name of the resource.
    All other names are remembered for logging and informational purposes.
    """

    group: str
    """
    The resource's API group; e.g. ``"apps"``, ``"batch"``.
    For Core v1 API resources, an empty string: ``""``.
    """

    version: str
    """
    The resource's API version; e.g. ``"v1"``, ``"v1beta1"``, etc.
    """

    plural: str
    """
    The resource's plural name; e.g. ``"pods"``, ``"configmaps"``.
    It is used as an API endpoint, together with API group & version.
    """

    kind: str = ''
    """
    The resource's kind (as in YAML files); e.g. ``"Pod"``, ``"ConfigMap"``.
    """

    namespaced: bool = True
    """
    Whether the resource is namespaced (``True``) or cluster-scoped (``False``).
    """

    verbs: FrozenSet[str] = frozenset()
    """
    All available verbs for the resource, as supported by the API;
    e.g., ``{"list", "watch", "create", "update", "delete", "patch"}``.
    """

    def __hash__(self) -> int:
        return hash((self.group, self.version, self.plural))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Resource):
            self_tuple = (self.group, self.version, self.plural)
            other_tuple = (other.group, other.version, other.plural)
            return self_tuple == other_tuple
        else:
            return NotImplemented

    def __repr__(self) -> str:
        return f'{self.plural}.{self.version}.{self.group}'.strip('.')

    @property
    def gvk(self) -> ids.GroupVersionKind:
        return ids.GroupVersionKind(self.group, self.version, self.kind)

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    def get_url(
            self,
            *,
            server: Optional[str] = None,
            namespace: Optional[str] = None,
            name: Optional[str] = None,
            subresource: Optional[str] = None,
            params: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        Build a URL to be used with the API.

        If the namespace is not set, a cluster-wide URL is returned.
        For cluster-scoped resources, the namespace is ignored.

        If the name is not set, the URL for the resource list is returned.
        Otherwise (if set), the URL for the individual resource is returned.

        Params go to the query parameters (``?param1=value1&param2=value2...``).
        """
        if subresource is not None and name is None:
            raise ValueError("Subresources can be used only with specific resources by their name.")
        if self.namespaced and not namespace and name is not None:
            raise ValueError("Specific namespaces are required for specific namespaced resources.")

        parts: List[Optional[str]] = [
            '/api' if self.group == '' and self.version == 'v1' else '/apis',
            self.group,
            self.version,
            'namespaces' if self.namespaced and namespace else None,
            namespace if self.namespaced and namespace else None,
            self.plural,
            name,
            subresource,
        ]

        query = urllib.parse.urlencode(params, encoding='utf-8') if params else ''
        path = '/'.join([part for part in parts if part])
        url = path + ('?' if query else '') + query
        return url if server is None else server.rstrip('/') + '/' + url.lstrip('/')


# Some builtins are used directly by the reconciler itself, regardless of the discovery.
CONFIGMAPS = Resource('', 'v1', 'configmaps', kind='ConfigMap', namespaced=True)
NAMESPACES = Resource('', 'v1', 'namespaces', kind='Namespace', namespaced=False)
