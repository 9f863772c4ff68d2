"""
Command-line interface for rastercam.

Usage:
    python -m rastercam info MESH.stl
    python -m rastercam rasterize MESH.stl --step 0.1 --filter up -o points.npz
    python -m rastercam toolpath TERRAIN.stl TOOL.stl -o path.json [options]
    python -m rastercam toolpath TERRAIN.stl --ball 2.5 -o path.npz [options]

Examples:
    # Terrain point cloud at the 'medium' resolution, as plain XYZ text
    python -m rastercam rasterize terrain.stl --step medium -o terrain.xyz

    # Toolpath with a 3 mm ball-end tool, every 2nd column and 10th row
    python -m rastercam toolpath terrain.stl --ball 3 --step 0.5 \
        --x-stride 2 --y-stride 10 --floor -5 -o path.json

    # Same, with settings taken from a YAML file
    python -m rastercam toolpath terrain.stl tool.stl --config mill.yaml -o path.npz
"""

import argparse
import logging
import sys
from rastercam.config import PipelineConfig, load_config, resolve_step
from rastercam.errors import RasterCamError
from rastercam.io import read_stl, save_point_cloud, save_toolpath
from rastercam.pipeline import mill_meshes
from rastercam.rasterize import FilterMode, rasterize
from rastercam.shapes import hemisphere_tool


def cmd_info(args):
    triangles = read_stl(args.mesh)
    bounds = triangles.bounds
    up = len(triangles.facing(FilterMode.UPWARD_FACING.face_filter))
    down = len(triangles.facing(FilterMode.DOWNWARD_FACING.face_filter))
    print(f"Mesh: {args.mesh}")
    print(f"  triangles: {len(triangles)} ({up} upward, {down} downward, "
          f"{triangles.degenerate_count} degenerate)")
    print(f"  bounds: ({bounds.min[0]:.4g}, {bounds.min[1]:.4g}, {bounds.min[2]:.4g}) - "
          f"({bounds.max[0]:.4g}, {bounds.max[1]:.4g}, {bounds.max[2]:.4g})")
    print(f"  size: {bounds.width:.4g} x {bounds.depth:.4g} x {bounds.height:.4g}")
    return 0


def cmd_rasterize(args):
    triangles = read_stl(args.mesh)
    cloud = rasterize(triangles, resolve_step(args.step), FilterMode.coerce(args.filter),
                      use_index=not args.brute_force, workers=args.workers)
    out = save_point_cloud(cloud, args.output)
    print(f"Rasterized {len(triangles)} triangles at step {cloud.step:g}: "
          f"{cloud.raster.columns}x{cloud.raster.rows} raster, {cloud.count} points")
    print(f"Exported to: {out}")
    return 0


def cmd_toolpath(args):
    if (args.tool is None) == (args.ball is None):
        print("Error: give either a TOOL mesh or --ball RADIUS", file=sys.stderr)
        return 1

    config = load_config(args.config) if args.config else PipelineConfig()
    config = config.replace(step_size=args.step, x_stride=args.x_stride,
                            y_stride=args.y_stride, floor_z=args.floor,
                            workers=args.workers)

    terrain = read_stl(args.terrain)
    tool = read_stl(args.tool) if args.tool else hemisphere_tool(args.ball)
    result = mill_meshes(terrain, tool, config)

    path = result.toolpath
    print(f"Terrain: {result.terrain.count} points, tool: {result.tool.count} points "
          f"(step {config.step_size:g})")
    print(f"Toolpath: {path.shape[0]} scanlines x {path.shape[1]} points "
          f"= {path.sample_count} samples")
    out = save_toolpath(path, args.output)
    print(f"Exported to: {out}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='rastercam',
        description='Rasterize STL meshes and generate height-map toolpaths')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='Log progress (-v) or debug detail (-vv)')
    subparsers = parser.add_subparsers(dest='subcommand', help='Command')

    info_parser = subparsers.add_parser('info', help='Describe an STL mesh')
    info_parser.add_argument('mesh', help='STL file')

    ras_parser = subparsers.add_parser('rasterize', help='Convert a mesh to a point cloud')
    ras_parser.add_argument('mesh', help='STL file')
    ras_parser.add_argument('-s', '--step', default='fine',
                            help='Step size in mm or coarse/medium/fine/very-fine')
    ras_parser.add_argument('--filter', default='up', choices=['up', 'down', 'none'],
                            help='Face filter (default: up)')
    ras_parser.add_argument('--brute-force', action='store_true',
                            help='Test every triangle for every ray (no spatial grid)')
    ras_parser.add_argument('-j', '--workers', type=int, default=1,
                            help='Worker threads')
    ras_parser.add_argument('-o', '--output', required=True, metavar='FILE',
                            help='Output file (.npz or .xyz)')

    tp_parser = subparsers.add_parser('toolpath', help='Generate a toolpath')
    tp_parser.add_argument('terrain', help='Terrain STL file')
    tp_parser.add_argument('tool', nargs='?', help='Tool STL file')
    tp_parser.add_argument('--ball', type=float, metavar='RADIUS',
                           help='Use a generated ball-end tool instead of a TOOL mesh')
    tp_parser.add_argument('-c', '--config', metavar='FILE', help='YAML settings file')
    tp_parser.add_argument('-s', '--step', help='Step size in mm or level name')
    tp_parser.add_argument('--x-stride', type=int, help='Columns between samples')
    tp_parser.add_argument('--y-stride', type=int, help='Rows between samples')
    tp_parser.add_argument('--floor', type=float, help='Z used where there is no terrain')
    tp_parser.add_argument('-j', '--workers', type=int, help='Worker threads')
    tp_parser.add_argument('-o', '--output', required=True, metavar='FILE',
                           help='Output file (.npz or .json)')

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG if args.verbose > 1 else logging.INFO,
                            format='%(levelname)s %(name)s: %(message)s')

    commands = {
        'info': cmd_info,
        'rasterize': cmd_rasterize,
        'toolpath': cmd_toolpath,
    }
    if args.subcommand not in commands:
        parser.print_help()
        return 1

    try:
        return commands[args.subcommand](args)
    except (RasterCamError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
