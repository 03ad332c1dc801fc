"""
Dance Model (.model) Binary Format

A model file holds one skeleton (bind-pose basis matrices and parent links)
and one skinned mesh split into sections. Sections store local bone indices;
a remap table translates them to global skeleton indices per "batch" of
sections.

All offsets are absolute unless noted otherwise. All values little-endian.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import CyclicHierarchyError, StructuralMismatchError
from .binary_reader import BinaryReader

logger = logging.getLogger(__name__)

# =============================================================================
# File header
# =============================================================================

# typedef struct {
#     ...                          // 0x00 - 0x17 unknown
#     uint32 boneCount;            // 0x18
#     uint32 ofsBones;             // 0x1C - bone record array
#     uint32 numBoneBatches;       // 0x20 - number of bone remap batches
#     int32  ofsBoneRemap;         // 0x24 - bone remap table (int16 entries)
#     uint32 numSections;          // 0x28
#     ...                          // 0x2C - 0x33 unknown
#     uint32 ofsSections;          // 0x34 - section record array
# } modelHeader_t;

MODEL_OFS_BONE_COUNT = 0x18
MODEL_OFS_BATCH_COUNT = 0x20
MODEL_OFS_REMAP_TABLE = 0x24
MODEL_OFS_SECTION_COUNT = 0x28
MODEL_OFS_SECTION_PTR = 0x34

# =============================================================================
# Bone record (176 bytes = 11 rows of 16 bytes)
# =============================================================================

# typedef struct {
#     byte   unknown0[16];   // +0x00
#     vec4_t basis[4];      // +0x10 - c1..c4, columns of the bind basis
#     // basis[3].xyz doubles as the bind position, read from +0x40
#     byte   unknown1[92];   // +0x50
#     int32  parent;         // +0xAC - parent bone index, -1 for roots
# } boneRecord_t;

BONE_RECORD_SIZE = 16 * 11
BONE_OFS_BASIS = 16 * 1
BONE_OFS_POSITION = 16 * 4
BONE_OFS_PARENT = 16 * 10 + 12

BASIS_SNAP_EPSILON = 0.00001

# =============================================================================
# Section record (64 bytes)
# =============================================================================

# typedef struct {
#     uint32 ofsVerts;       // +0x00 - relative to this record
#     uint32 numVerts;       // +0x04
#     uint8  unknown;        // +0x08
#     uint8  vertexStride;   // +0x09 - must be 68
#     byte   unknown1[22];   // +0x0A
#     uint32 ofsIndices;     // +0x20 - relative to this field
#     uint32 numIndices;     // +0x24 - three per triangle
#     byte   unknown2[24];   // +0x28
# } sectionRecord_t;

SECTION_RECORD_SIZE = 64
SECTION_OFS_INDICES_BASE = 0x20
SECTION_HEADER_SKIP = 22

# =============================================================================
# Vertex record (68 bytes)
# =============================================================================

# typedef struct {
#     vec3_t position;       // 12 bytes
#     uint8  bones[4];       // 4 bytes - local bone indices
#     vec3_t weights;        // 12 bytes - weights 1..3, weight 0 = 1 - sum
#     vec3_t normal;         // 12 bytes
#     vec3_t tangent;        // 12 bytes - not kept
#     vec3_t bitangent;      // 12 bytes - not kept
#     half   uv[2];          // 4 bytes
# } vertexRecord_t;

VERTEX_STRIDE = 68
TRIANGLE_SIZE = 6  # three uint16

MESH_BUFFERS = ('positions', 'normals', 'uvs', 'bone_indices', 'bone_weights', 'section_ids', 'triangles')


# =============================================================================
# Skeleton
# =============================================================================

Vec3 = Tuple[float, float, float]
Vec4 = Tuple[float, float, float, float]


@dataclass(frozen=True)
class Bone:
    """One bone of the bind-pose skeleton"""
    index: int
    parent: Optional[int]
    basis: Tuple[Vec4, Vec4, Vec4, Vec4]  # c1..c4
    position: Vec3
    child_count: int = 0
    name: str = ""

    def basis_matrix(self) -> np.ndarray:
        """Bind basis as a 4x4 matrix whose columns are c1..c4"""
        return np.array(self.basis, dtype=np.float64).T

    @classmethod
    def read(cls, reader: BinaryReader, index: int, record_ofs: int) -> 'Bone':
        """Read one bone record (child count is filled in by the skeleton)"""
        reader.seek(record_ofs + BONE_OFS_BASIS)
        basis = tuple(
            tuple(_snap(v, BASIS_SNAP_EPSILON) for v in reader.read_vec4f())
            for _ in range(4)
        )

        reader.seek(record_ofs + BONE_OFS_POSITION)
        position = reader.read_vec3f()

        reader.seek(record_ofs + BONE_OFS_PARENT)
        parent = reader.read_i32()

        return cls(
            index=index,
            parent=None if parent == -1 else parent,
            basis=basis,
            position=position,
        )


@dataclass(frozen=True)
class Skeleton:
    """Ordered bones with a validated forest hierarchy"""
    bones: Tuple[Bone, ...]
    edges: Tuple[Tuple[int, int], ...] = field(init=False)
    evaluation_order: Tuple[int, ...] = field(init=False)

    def __post_init__(self):
        bones = tuple(self.bones)
        count = len(bones)
        child_counts = [0] * count
        edges = []
        for bone in bones:
            if bone.parent is None:
                continue
            if not 0 <= bone.parent < count:
                raise StructuralMismatchError(
                    f"Bone {bone.index} has parent {bone.parent}, skeleton has {count} bones"
                )
            edges.append((bone.parent, bone.index))
            child_counts[bone.parent] += 1

        bones = tuple(
            b if b.child_count == child_counts[i] else replace(b, child_count=child_counts[i])
            for i, b in enumerate(bones)
        )
        object.__setattr__(self, 'bones', bones)
        object.__setattr__(self, 'edges', tuple(edges))
        object.__setattr__(self, 'evaluation_order', _topological_order(bones))

    def __len__(self) -> int:
        return len(self.bones)

    @property
    def roots(self) -> List[int]:
        return [b.index for b in self.bones if b.parent is None]

    @property
    def positions(self) -> np.ndarray:
        """Bone positions as an (N, 3) array, one renderable point per bone"""
        if not self.bones:
            return np.zeros((0, 3), dtype=np.float64)
        return np.array([b.position for b in self.bones], dtype=np.float64)

    def children(self, index: int) -> List[int]:
        return [child for parent, child in self.edges if parent == index]

    def with_positions(self, positions: np.ndarray) -> 'Skeleton':
        """Copy of the skeleton with new bone positions"""
        return Skeleton(bones=tuple(
            replace(b, position=tuple(float(v) for v in positions[i]))
            for i, b in enumerate(self.bones)
        ))

    def with_names(self, names: Sequence[str]) -> 'Skeleton':
        """Copy of the skeleton with bone names attached (extra names are ignored)"""
        if len(names) != len(self.bones):
            logger.warning("Bone name table has %d names for %d bones", len(names), len(self.bones))
        return Skeleton(bones=tuple(
            replace(b, name=names[i]) if i < len(names) else b
            for i, b in enumerate(self.bones)
        ))

    def get_bone_by_name(self, name: str) -> Optional[Bone]:
        for bone in self.bones:
            if bone.name == name:
                return bone
        return None

    @classmethod
    def read(cls, reader: BinaryReader) -> 'Skeleton':
        """Read the bone array referenced by the file header"""
        reader.seek(MODEL_OFS_BONE_COUNT)
        bone_count = reader.read_u32()
        bone_ptr = reader.read_u32()
        logger.debug("Skeleton: %d bones at 0x%X", bone_count, bone_ptr)

        bones = []
        for i in range(bone_count):
            with reader.scope(f"bone {i}"):
                bones.append(Bone.read(reader, i, bone_ptr + BONE_RECORD_SIZE * i))
        return cls(bones=tuple(bones))


def _topological_order(bones: Sequence[Bone]) -> Tuple[int, ...]:
    """Bone indices ordered so every parent precedes its children"""
    children: Dict[int, List[int]] = {}
    for bone in bones:
        if bone.parent is not None:
            children.setdefault(bone.parent, []).append(bone.index)

    order = []
    stack = [b.index for b in reversed(bones) if b.parent is None]
    while stack:
        index = stack.pop()
        order.append(index)
        stack.extend(reversed(children.get(index, ())))

    if len(order) != len(bones):
        visited = set(order)
        stuck = sorted(b.index for b in bones if b.index not in visited)
        raise CyclicHierarchyError(f"Bone hierarchy contains a cycle through bones {stuck}")
    return tuple(order)


# =============================================================================
# Mesh
# =============================================================================

@dataclass(frozen=True)
class MeshSection:
    """Location of one section inside the flat mesh buffers"""
    index: int
    vertex_start: int
    vertex_count: int
    triangle_start: int
    triangle_count: int
    batch: int
    local_bones: Tuple[int, ...]


@dataclass(frozen=True)
class SectionRecord:
    """Raw 64-byte section record"""
    record_ofs: int
    ofs_verts: int
    num_verts: int
    vertex_stride: int
    ofs_indices: int
    num_triangles: int

    @classmethod
    def read(cls, reader: BinaryReader, record_ofs: int) -> 'SectionRecord':
        reader.seek(record_ofs)
        ofs_verts = reader.read_u32()
        num_verts = reader.read_u32()
        reader.read_u8()
        stride_ofs = reader.tell()
        vertex_stride = reader.read_u8()
        if vertex_stride != VERTEX_STRIDE:
            raise StructuralMismatchError(
                f"Vertex stride is {vertex_stride}, expected {VERTEX_STRIDE}",
                offset=stride_ofs,
                context=reader.context,
            )
        reader.skip(SECTION_HEADER_SKIP)
        ofs_indices = reader.read_u32()
        num_triangles = reader.read_u32() // 3
        return cls(
            record_ofs=record_ofs,
            ofs_verts=ofs_verts,
            num_verts=num_verts,
            vertex_stride=vertex_stride,
            ofs_indices=ofs_indices,
            num_triangles=num_triangles,
        )

    @property
    def vertex_data_ofs(self) -> int:
        return self.record_ofs + self.ofs_verts

    @property
    def index_data_ofs(self) -> int:
        return self.record_ofs + SECTION_OFS_INDICES_BASE + self.ofs_indices


@dataclass(frozen=True, eq=False)
class Mesh:
    """Flat skinned mesh; bone indices are global skeleton indices"""
    positions: np.ndarray      # (N, 3)
    normals: np.ndarray        # (N, 3)
    uvs: np.ndarray            # (N, 2)
    bone_indices: np.ndarray   # (N, 4) int
    bone_weights: np.ndarray   # (N, 4)
    section_ids: np.ndarray    # (N,)
    triangles: np.ndarray      # (F, 3) int
    sections: Tuple[MeshSection, ...] = ()
    remap_table: Tuple[Tuple[int, ...], ...] = ()

    def __post_init__(self):
        for name in MESH_BUFFERS:
            getattr(self, name).setflags(write=False)

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    def with_geometry(self, positions: np.ndarray, normals: np.ndarray) -> 'Mesh':
        return replace(self, positions=positions, normals=normals)

    @classmethod
    def read(cls, reader: BinaryReader, flip_v: bool = True,
             strict_batch_count: bool = False) -> 'Mesh':
        """Read every section, assign bone batches and resolve global bone indices"""
        reader.seek(MODEL_OFS_SECTION_COUNT)
        section_count = reader.read_u32()
        reader.seek(MODEL_OFS_SECTION_PTR)
        section_ptr = reader.read_u32()
        logger.debug("Mesh: %d sections at 0x%X", section_count, section_ptr)

        # Pass 1: section records and buffer sizes
        records = []
        for i in range(section_count):
            with reader.scope(f"section {i}"):
                records.append(SectionRecord.read(reader, section_ptr + SECTION_RECORD_SIZE * i))
        vert_total = sum(r.num_verts for r in records)
        tri_total = sum(r.num_triangles for r in records)

        positions = np.zeros((vert_total, 3), dtype=np.float64)
        normals = np.zeros((vert_total, 3), dtype=np.float64)
        uvs = np.zeros((vert_total, 2), dtype=np.float64)
        local_indices = np.zeros((vert_total, 4), dtype=np.int64)
        weights = np.zeros((vert_total, 4), dtype=np.float64)
        section_ids = np.zeros(vert_total, dtype=np.int64)
        triangles = np.zeros((tri_total, 3), dtype=np.int64)

        # Pass 2: geometry and distinct local bone sets
        bone_sets: List[set] = []
        vi = 0
        fi = 0
        for i, record in enumerate(records):
            with reader.scope(f"section {i}"):
                for j in range(record.num_triangles):
                    reader.seek(record.index_data_ofs + j * TRIANGLE_SIZE)
                    triangles[fi] = [vi + reader.read_u16() for _ in range(3)]
                    fi += 1

                bone_set = set()
                for j in range(record.num_verts):
                    with reader.scope(f"vertex {j}"):
                        reader.seek(record.vertex_data_ofs + j * record.vertex_stride)
                        positions[vi] = reader.read_vec3f()
                        bones = reader.unpack('<4B')
                        w1, w2, w3 = reader.read_vec3f()
                        normals[vi] = reader.read_vec3f()
                        reader.read_vec3f()  # tangent
                        reader.read_vec3f()  # bitangent
                        u = reader.read_f16()
                        v = reader.read_f16()

                    section_ids[vi] = i
                    local_indices[vi] = bones
                    weights[vi] = (1.0 - w1 - w2 - w3, w1, w2, w3)
                    uvs[vi] = (u, 1.0 - v) if flip_v else (u, v)
                    bone_set.add(bones[0])
                    bone_set.update(b for b in bones[1:] if b != 0)
                    vi += 1

                bone_sets.append(bone_set)

        section_batch, batches = assign_batches(bone_sets)
        for i, record in enumerate(records):
            if section_batch[i] < 0 and bone_sets[i]:
                raise StructuralMismatchError(
                    f"Section {i} uses local bones {sorted(bone_sets[i])} before any batch started",
                    offset=record.record_ofs,
                    context=reader.name,
                )

        reader.seek(MODEL_OFS_BATCH_COUNT)
        declared_batches = reader.read_u32()
        if declared_batches != len(batches):
            message = f"Header declares {declared_batches} bone batches, sections produced {len(batches)}"
            if strict_batch_count:
                raise StructuralMismatchError(message, offset=MODEL_OFS_BATCH_COUNT, context=reader.context)
            logger.warning(message)

        # Pass 3: remap table, one int16 per distinct local index per batch
        reader.seek(MODEL_OFS_REMAP_TABLE)
        remap_ptr = reader.read_i32()
        reader.seek(remap_ptr)
        remap_table = []
        with reader.scope("bone remap table"):
            for batch in batches:
                remap_table.append(tuple(reader.read_i16() for _ in batch))

        bone_indices = np.zeros_like(local_indices)
        sections = []
        vi = 0
        fi = 0
        for i, record in enumerate(records):
            batch = section_batch[i]
            table = remap_table[batch] if batch >= 0 else ()
            for j in range(record.num_verts):
                for k, local in enumerate(local_indices[vi]):
                    if local >= len(table):
                        raise StructuralMismatchError(
                            f"Local bone {local} of vertex {j} is outside batch {batch} table of {len(table)}",
                            context=f"{reader.name} / section {i}",
                        )
                    bone_indices[vi, k] = table[local]
                vi += 1
            sections.append(MeshSection(
                index=i,
                vertex_start=vi - record.num_verts,
                vertex_count=record.num_verts,
                triangle_start=fi,
                triangle_count=record.num_triangles,
                batch=batch,
                local_bones=tuple(sorted(bone_sets[i])),
            ))
            fi += record.num_triangles

        return cls(
            positions=positions,
            normals=normals,
            uvs=uvs,
            bone_indices=bone_indices,
            bone_weights=weights,
            section_ids=section_ids,
            triangles=triangles,
            sections=tuple(sections),
            remap_table=tuple(remap_table),
        )


def starts_new_batch(bone_set) -> bool:
    """A section starts a new remap batch when its local bone set is exactly 0..n-1"""
    return bool(bone_set) and max(bone_set) == len(bone_set) - 1


def assign_batches(bone_sets: Sequence[set]) -> Tuple[List[int], List[set]]:
    """
    Assign sections to remap batches from their distinct local bone sets.

    Returns the batch index per section and the accumulated bone set per batch.
    Sections whose set is not complete join the most recently started batch.
    """
    batches: List[set] = []
    assignment = []
    for bone_set in bone_sets:
        if starts_new_batch(bone_set):
            batches.append(set())
        if batches:
            batches[-1].update(bone_set)
        assignment.append(len(batches) - 1)
    return assignment, batches


# =============================================================================
# Model
# =============================================================================

@dataclass(frozen=True)
class DanceModel:
    """Complete model file: skeleton plus skinned mesh"""
    skeleton: Skeleton
    mesh: Mesh

    @classmethod
    def read(cls, filepath: str, flip_v: bool = True,
             strict_batch_count: bool = False) -> 'DanceModel':
        """Read complete model from file"""
        with open(filepath, 'rb') as f:
            file_data = f.read()

        return cls.read_from_bytes(file_data, name=str(filepath), flip_v=flip_v,
                                   strict_batch_count=strict_batch_count)

    @classmethod
    def read_from_bytes(cls, data: bytes, name: str = "<model>", flip_v: bool = True,
                        strict_batch_count: bool = False) -> 'DanceModel':
        """Read complete model from bytes"""
        reader = BinaryReader(data, name=name)
        skeleton = Skeleton.read(reader)
        mesh = Mesh.read(reader, flip_v=flip_v, strict_batch_count=strict_batch_count)
        logger.debug("Model %s: %d bones, %d vertices, %d triangles",
                     name, len(skeleton), mesh.vertex_count, mesh.triangle_count)
        return cls(skeleton=skeleton, mesh=mesh)


def _snap(value: float, epsilon: float) -> float:
    return 0.0 if abs(value) < epsilon else value
