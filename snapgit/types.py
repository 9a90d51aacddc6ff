from typing import TypeAlias, NamedTuple, Literal

Path: TypeAlias = str  # a workspace-relative path, always '/'-separated
OID: TypeAlias = str  # hex sha1
ObjectType: TypeAlias = Literal['blob', 'tree', 'commit']
Mode: TypeAlias = Literal['100755', '100644', '40000']


class Author(NamedTuple):
    name: str
    email: str

    def __str__(self):
        return f'{self.name} <{self.email}>'


class TreeRecord(NamedTuple):
    mode: Mode
    name: str
    oid: OID
