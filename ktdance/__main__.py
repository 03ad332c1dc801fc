"""
Diagnostic command line

    python -m ktdance model PATH
    python -m ktdance anim PATH --frame 12
    python -m ktdance camera PATH --frame 12
    python -m ktdance archive PATH
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import Settings, load_settings
from .errors import DanceFormatError
from .formats.archive_format import DanceArchive
from .operators import AssetSession


def _setup_logger(level: str) -> logging.Logger:
    logger = logging.getLogger("ktdance")
    logger.setLevel(level)
    if not logger.handlers:
        sh = logging.StreamHandler(sys.stderr)
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        sh.setFormatter(fmt)
        logger.addHandler(sh)
    return logger


def print_model(session: AssetSession, path: str, archive: bool = False) -> None:
    if archive:
        mesh, skeleton = session.read_archive_mesh(path)
    else:
        mesh, skeleton = session.read_mesh(path)

    print(f"[model] {path}")
    print(f"[model] bones={len(skeleton)} roots={skeleton.roots}")
    for bone in skeleton.bones:
        x, y, z = bone.position
        label = f" {bone.name}" if bone.name else ""
        print(f"  bone {bone.index:3d}{label} parent={bone.parent} children={bone.child_count} "
              f"pos=({x:.3f}, {y:.3f}, {z:.3f})")

    print(f"[model] vertices={mesh.vertex_count} triangles={mesh.triangle_count} "
          f"sections={len(mesh.sections)} batches={len(mesh.remap_table)}")
    for section in mesh.sections:
        print(f"  section {section.index:3d} batch={section.batch} verts={section.vertex_count} "
              f"tris={section.triangle_count} local_bones={list(section.local_bones)}")
    for i, table in enumerate(mesh.remap_table):
        print(f"  remap {i}: {list(table)}")


def print_animation(session: AssetSession, path: str, frame: Optional[int]) -> None:
    sample = session.read_animation(path, frame)
    print(f"[anim] {path}")
    print(f"[anim] max_frame={sample.max_frame} frame={sample.frame} bones={len(sample)}")
    for i, state in enumerate(sample.bones):
        t = ", ".join(f"{v:.4f}" for v in state.translation)
        q = ", ".join(f"{v:.4f}" for v in state.rotation)
        print(f"  bone {i:3d} count={state.count} interp={state.interpolation} type={state.track_type} "
              f"unknown={state.unknown} addr=0x{state.address:X} t=({t}) q=({q})")


def print_camera(session: AssetSession, path: str, frame: Optional[int]) -> None:
    translation, rotation = session.read_camera(path, frame)
    camera = session.cameras.load(path)
    print(f"[camera] {path}")
    print(f"[camera] translation_frames={len(camera.translations)} rotation_frames={len(camera.rotations)}")
    print(f"[camera] frame={session.current_frame(frame)}")
    print(f"  translation=({', '.join(f'{v:.4f}' for v in translation)})")
    print(f"  rotation=({', '.join(f'{v:.4f}' for v in rotation)})")


def print_archive(session: AssetSession, path: str) -> None:
    archive = DanceArchive.read(path)
    print(f"[archive] {path}")
    print(f"[archive] version={archive.version} files={len(archive.entries)}")
    for entry in archive.entries:
        packed = " compressed" if entry.compressed else ""
        print(f"  {entry.name} size={entry.size} stored={entry.zsize}{packed}")
    if archive.find(".model") is not None:
        print_model(session, path, archive=True)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="ktdance", description="Inspect dance model and animation files")
    ap.add_argument("kind", choices=["model", "anim", "camera", "archive"])
    ap.add_argument("path", type=str)
    ap.add_argument("--frame", type=int, default=None)
    ap.add_argument("--config", type=str, default="", help="JSON settings file")
    ap.add_argument("--verbose", action="store_true", help="log decoder details")
    args = ap.parse_args(argv)

    settings = load_settings(Path(args.config)) if args.config else Settings()
    logger = _setup_logger("DEBUG" if args.verbose else settings.log_level)

    session = AssetSession(settings)
    try:
        if args.kind == "model":
            print_model(session, args.path)
        elif args.kind == "anim":
            print_animation(session, args.path, args.frame)
        elif args.kind == "camera":
            print_camera(session, args.path, args.frame)
        else:
            print_archive(session, args.path)
    except (DanceFormatError, OSError) as e:
        logger.error("%s: %s", args.path, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
