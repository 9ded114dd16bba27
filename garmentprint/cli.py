"""Command line interface for garmentprint."""
import argparse
import logging
import sys
from pathlib import Path

from garmentprint.color_space import hex_to_rgb
from garmentprint.compositor import render_internal
from garmentprint.decomposer import decompose
from garmentprint.image_io import crop_to_ratio, load_image, save_image
from garmentprint.placement import ArtworkPlacementState
from garmentprint.quantizer import ColorQuantizer
from garmentprint.types import GarmentPrintError, PlacementConfig, QuantizeConfig


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog='garmentprint',
        description='Quantize, decompose and place artwork for garment boundaries'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    # Shared by every sub-command
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('input', type=str, help='Input image path, URL or data URI')
    common.add_argument(
        '--save-stages',
        type=str,
        default=None,
        help='Directory to save intermediate stage images'
    )

    palette = argparse.ArgumentParser(add_help=False)
    palette.add_argument(
        '--colors',
        type=int,
        default=4,
        help='Maximum number of palette colors (default: 4)'
    )
    palette.add_argument(
        '--sensitivity',
        type=float,
        default=5.0,
        help='Minimum color density in percent (default: 5)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    quantize = subparsers.add_parser('quantize', parents=[common, palette], help='Reduce artwork to a palette')
    quantize.add_argument('-o', '--output', type=str, required=True, help='Output PNG path')
    quantize.add_argument(
        '--remove',
        type=str,
        nargs='*',
        default=[],
        help='Hex colors to clear from the artwork (e.g. #ffffff)'
    )

    decomp = subparsers.add_parser('decompose', parents=[common, palette], help='Write one PNG per palette color')
    decomp.add_argument('-o', '--output', type=str, required=True, help='Output directory')

    preview = subparsers.add_parser('preview', parents=[common, palette], help='Composite artwork into a clip region')
    preview.add_argument('-o', '--output', type=str, required=True, help='Output PNG path')
    preview.add_argument('--ratio', type=float, required=True, help='Clip region width/height ratio')
    preview.add_argument('--x', type=float, default=0.5, help='Center x ratio (default: 0.5)')
    preview.add_argument('--y', type=float, default=0.5, help='Center y ratio (default: 0.5)')
    preview.add_argument('--size', type=float, default=1.0, help='Size ratio (default: 1.0)')
    preview.add_argument('--rotation', type=float, default=0.0, help='Rotation in degrees (default: 0)')
    preview.add_argument('--crop', action='store_true', help='Center-crop artwork to the clip ratio first')
    preview.add_argument('--original', action='store_true', help='Skip quantization')

    return parser


def _stage_dir(parsed_args):
    if not parsed_args.save_stages:
        return None
    stages = Path(parsed_args.save_stages)
    stages.mkdir(parents=True, exist_ok=True)
    print(f"Debug stages will be saved to: {stages}")
    return stages


def _quantizer(parsed_args) -> ColorQuantizer:
    return ColorQuantizer(QuantizeConfig(limit=parsed_args.colors, min_density=parsed_args.sensitivity / 100))


def _print_palette(result) -> None:
    print(f"\nPalette ({len(result.palette)} colors):")
    for entry in result.palette:
        print(f"  {entry.hex}  {entry.density * 100:5.1f}%")


def run_quantize(parsed_args) -> int:
    stages = _stage_dir(parsed_args)
    remove = [hex_to_rgb(h) for h in parsed_args.remove]

    print("Step 1/3: Loading image...")
    pixels = load_image(parsed_args.input)
    if stages:
        save_image(pixels, stages / "stage1_input.png")

    print("Step 2/3: Quantizing...")
    result = _quantizer(parsed_args).quantize(pixels, colors_to_remove=remove)

    print("Step 3/3: Writing output...")
    save_image(result.pixels, parsed_args.output)
    if stages:
        save_image(result.pixels, stages / "stage2_quantized.png")
    _print_palette(result)
    print(f"\nSaved: {parsed_args.output}")
    return 0


def run_decompose(parsed_args) -> int:
    stages = _stage_dir(parsed_args)
    output_dir = Path(parsed_args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    print("Step 1/3: Loading image...")
    pixels = load_image(parsed_args.input)

    print("Step 2/3: Quantizing...")
    result = _quantizer(parsed_args).quantize(pixels)
    if stages:
        save_image(result.pixels, stages / "stage1_quantized.png")

    print("Step 3/3: Decomposing...")
    parts = decompose(result.pixels, result.colors)
    for index, (part, entry) in enumerate(zip(parts, result.palette)):
        path = save_image(part, output_dir / f"part_{index}_{entry.hex.lstrip('#')}.png")
        print(f"  {path}")
    _print_palette(result)
    return 0


def run_preview(parsed_args) -> int:
    stages = _stage_dir(parsed_args)

    print("Step 1/3: Loading image...")
    artwork = load_image(parsed_args.input)
    if parsed_args.crop:
        artwork = crop_to_ratio(artwork, parsed_args.ratio)

    if parsed_args.original:
        print("Step 2/3: Skipping quantization (original artwork)")
    else:
        print("Step 2/3: Quantizing...")
        result = _quantizer(parsed_args).quantize(artwork)
        artwork = result.pixels
        _print_palette(result)
    if stages:
        save_image(artwork, stages / "stage1_artwork.png")

    print("Step 3/3: Compositing...")
    placement = ArtworkPlacementState(parsed_args.ratio, config=PlacementConfig())
    height, width = artwork.shape[:2]
    placement.place(width, height, parsed_args.x, parsed_args.y, parsed_args.rotation, parsed_args.size)
    canvas = render_internal(placement, artwork)
    save_image(canvas, parsed_args.output)
    print(f"  Visible fraction: {placement.visibility():.2f}")
    print(f"\nSaved: {parsed_args.output}")
    return 0


COMMANDS = {
    'quantize': run_quantize,
    'decompose': run_decompose,
    'preview': run_preview,
}


def main(args=None):
    """Main entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    try:
        return COMMANDS[parsed_args.command](parsed_args)
    except (GarmentPrintError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
