#!/usr/bin/env python3
"""
glbsync - Command Line Version
Inspect and edit GLB/VRM files: move, copy, paste and delete nodes, import
retargeted animations, list preserved extensions
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from core.config import CodecConfig, DEFAULT_VENDOR_PREFIXES
from core.errors import SceneSyncError
from document_manager import DocumentManager
from exporters.glb_exporter import default_output_name
from readers import SUPPORTED_EXTENSIONS

EDIT_COMMANDS = {'move', 'copy', 'paste', 'delete', 'animate'}


def build_parser():
    parser = argparse.ArgumentParser(
        prog='glbsync',
        description='Edit GLB/VRM scene graphs without losing vendor extensions',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show resources, hierarchy and extensions
  glbsync avatar.vrm info

  # Move a node under another one, keeping its world position
  glbsync avatar.vrm move Hat --to Head --preserve-world -o out.vrm

  # Copy and delete (nodes by name or by #id)
  glbsync scene.glb copy "#4" -o scene_copy.glb
  glbsync scene.glb delete Helper

  # Paste a subtree of another file, replacing a node in place
  glbsync avatar.vrm paste other.vrm Hat --to "#7" --replace -o out.vrm

  # Import the animations of a VRMA/GLB file onto the model skeleton
  glbsync avatar.vrm animate dance.vrma -o avatar_dance.vrm
        """
    )

    parser.add_argument('input', type=str, help='Input file (.glb, .vrm, .vrma)')
    parser.add_argument('-o', '--output', type=str,
                        help='Output file for edit commands (default: <input>_edited)')
    parser.add_argument('--fuzzy-threshold', type=float, default=0.6,
                        help='Minimum bone name similarity for fuzzy matches (default: 0.6)')
    parser.add_argument('--vendor-prefix', action='append', default=None,
                        help='Bone name prefix to strip (repeatable, replaces defaults)')
    parser.add_argument('--required-prefix', action='append', default=[],
                        help='Extensions with this prefix are written as required (repeatable)')
    parser.add_argument('--strict-chunks', action='store_true',
                        help='Reject unknown GLB chunks instead of skipping them')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('info', help='Show resources, hierarchy and extensions')
    commands.add_parser('extensions', help='List extensions attached to the document')

    move = commands.add_parser('move', help='Reparent a node')
    move.add_argument('node', help='Node name or #id')
    move.add_argument('--to', dest='parent', help='New parent (default: scene root)')
    move.add_argument('--preserve-world', action='store_true',
                      help='Keep the world transform')

    copy = commands.add_parser('copy', help='Duplicate a subtree')
    copy.add_argument('node', help='Node name or #id')
    copy.add_argument('--to', dest='parent', help='Parent of the copy (default: scene root)')

    paste = commands.add_parser('paste', help='Paste a subtree from another GLB/VRM file')
    paste.add_argument('source', help='File holding the subtree')
    paste.add_argument('node', help='Node name or #id in the source file')
    paste.add_argument('--to', dest='target',
                       help='Parent of the pasted subtree, or the node it replaces (default: scene root)')
    paste.add_argument('--replace', action='store_true',
                       help='Replace the --to node instead of adding a child to it')

    delete = commands.add_parser('delete', help='Delete a subtree')
    delete.add_argument('node', help='Node name or #id')

    animate = commands.add_parser('animate', help='Import animations from a GLB/VRMA file')
    animate.add_argument('clip_file', help='File holding the animations')
    animate.add_argument('--no-retarget', action='store_true',
                         help='Use track names as-is instead of retargeting')

    return parser


def build_config(args):
    prefixes = tuple(args.vendor_prefix) if args.vendor_prefix else DEFAULT_VENDOR_PREFIXES
    return CodecConfig(
        vendor_prefixes=prefixes,
        fuzzy_threshold=args.fuzzy_threshold,
        always_required_prefixes=tuple(args.required_prefix),
        skip_unknown_chunks=not args.strict_chunks,
    )


def print_hierarchy(entries, depth=0):
    for entry in entries:
        label = entry['name'] or '(unnamed)'
        details = []
        if entry.get('mesh') is not None:
            details.append(f"mesh {entry['mesh']}")
        if entry.get('skin') is not None:
            details.append(f"skin {entry['skin']}")
        suffix = f" [{', '.join(details)}]" if details else ''
        print(f"{'  ' * depth}#{entry['id']} {label}{suffix}")
        print_hierarchy(entry['children'], depth + 1)


def show_info(manager):
    info = manager.get_resource_info()
    print("=" * 60)
    print(f"File type: {info['file_type']}  (glTF {info['version']}, generator: {info['generator']})")
    print(f"Scenes: {info['scenes']}  Nodes: {info['nodes']}  Meshes: {info['meshes']}  "
          f"Materials: {info['materials']}")
    print(f"Skins: {info['skins']}  Animations: {info['animations']}  Textures: {info['textures']}")

    metadata = manager.vrm_metadata
    if metadata:
        print(f"VRM {metadata['spec_version']}: {metadata['title'] or '(untitled)'} "
              f"by {metadata['author'] or '(unknown)'}")

    print("=" * 60)
    for scene in manager.get_hierarchy():
        marker = ' (active)' if scene['active'] else ''
        print(f"{scene['name']}{marker}")
        print_hierarchy(scene['nodes'], 1)

    extensions = manager.get_active_extensions()
    print("=" * 60)
    print(f"Extensions: {', '.join(extensions) if extensions else 'none'}")


def run_edit(manager, args):
    if args.command == 'move':
        node_id = manager.resolve_node(args.node)
        parent_id = manager.resolve_node(args.parent) if args.parent else None
        manager.move_node(node_id, parent_id, preserve_world=args.preserve_world)
        print(f"✓ Moved {args.node} under {args.parent or 'scene root'}")

    elif args.command == 'copy':
        node_id = manager.resolve_node(args.node)
        parent_id = manager.resolve_node(args.parent) if args.parent else None
        new_id = manager.copy_node(node_id, parent_id)
        print(f"✓ Copied {args.node} as #{new_id}")

    elif args.command == 'paste':
        source = DocumentManager(manager.config)
        asyncio.run(source.load_from_file(args.source))
        target_id = manager.resolve_node(args.target) if args.target else None
        new_id = manager.paste_node(source, source.resolve_node(args.node), target_id,
                                    mode='replace' if args.replace else 'add')
        print(f"✓ Pasted {args.node} from {Path(args.source).name} as #{new_id}")

    elif args.command == 'delete':
        removed = manager.delete_node(manager.resolve_node(args.node))
        print(f"✓ Deleted {removed} node(s)")

    elif args.command == 'animate':
        data = Path(args.clip_file).read_bytes()
        reports = manager.ingest_animation_bytes(data, retarget=not args.no_retarget)
        imported = [r for r in reports if r.success]
        for report in reports:
            for track, reason in report.skipped:
                print(f"  skipped {track}: {reason}")
        if not imported:
            raise SceneSyncError(f"No animation from {args.clip_file} could be imported")
        print(f"✓ Imported {len(imported)} of {len(reports)} animation(s)")


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    # Validate input file exists
    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: Input file not found: {args.input}", file=sys.stderr)
        sys.exit(1)

    file_ext = input_path.suffix.lower()
    if file_ext not in SUPPORTED_EXTENSIONS:
        print(f"Error: Unsupported file format: {file_ext}", file=sys.stderr)
        print(f"Supported formats: {', '.join(sorted(SUPPORTED_EXTENSIONS))}", file=sys.stderr)
        sys.exit(1)

    def progress_callback(message):
        if args.verbose:
            print(message)

    try:
        config = build_config(args)
        manager = DocumentManager(config, progress_callback=progress_callback)
        asyncio.run(manager.load_from_file(input_path))

        if args.command == 'info':
            show_info(manager)
        elif args.command == 'extensions':
            for name in manager.get_active_extensions():
                print(name)
        elif args.command in EDIT_COMMANDS:
            run_edit(manager, args)
            output = Path(args.output) if args.output else default_output_name(input_path)
            result = asyncio.run(manager.export_to_file(output))
            if not result['success']:
                print(f"\n✗ {result['message']}", file=sys.stderr)
                sys.exit(1)
            print(f"✓ Wrote {output}")

    except (SceneSyncError, ValueError, OSError) as e:
        print(f"\n✗ {args.command} failed: {e}", file=sys.stderr)
        sys.exit(1)

    return 0


if __name__ == "__main__":
    main()
